"""Atomic counter and upsert statements.

Counters (quota usage, operation counters, cooldown records) are only ever
changed through ``atomic_increment``: one ``INSERT ... ON CONFLICT DO UPDATE``
statement, so concurrent increments cannot lose updates. Reading a row,
adding in Python and writing it back is not allowed for these tables.
"""

from typing import Any, Iterable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ClauseElement


def _dialect_insert(db: AsyncSession, model):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")


async def atomic_increment(
    db: AsyncSession,
    model,
    *,
    conflict_columns: Iterable[str],
    values: dict[str, Any],
    increments: dict[str, int],
    overrides: dict[str, Any] | None = None,
    index_where: ClauseElement | None = None,
) -> None:
    """Insert a counter row or add to the existing one in a single statement.

    Args:
        db: Session the statement runs in (caller owns the transaction)
        model: Mapped class of the counter table
        conflict_columns: Columns of the unique key identifying the counter
        values: Full row inserted when no counter exists yet
        increments: Column -> amount added to the existing row on conflict
        overrides: Extra SET expressions on conflict; may reference the
            existing row (e.g. ``case(...)`` for a window reset) and take
            precedence over ``increments``
        index_where: Predicate of a partial unique index, if the key is one
    """
    set_: dict[str, Any] = {
        column: getattr(model, column) + amount
        for column, amount in increments.items()
    }
    if overrides:
        set_.update(overrides)

    stmt = _dialect_insert(db, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        index_where=index_where,
        set_=set_,
    )
    await db.execute(stmt)


async def upsert(
    db: AsyncSession,
    model,
    *,
    conflict_columns: Iterable[str],
    values: dict[str, Any],
    update_columns: Iterable[str],
    index_where: ClauseElement | None = None,
) -> None:
    """Insert a row, or overwrite ``update_columns`` of the conflicting row."""
    stmt = _dialect_insert(db, model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        index_where=index_where,
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    await db.execute(stmt)


async def insert_or_ignore(
    db: AsyncSession,
    model,
    *,
    conflict_columns: Iterable[str],
    values: dict[str, Any],
    index_where: ClauseElement | None = None,
) -> None:
    """Insert a row unless one with the same unique key already exists."""
    stmt = _dialect_insert(db, model).values(**values)
    stmt = stmt.on_conflict_do_nothing(
        index_elements=list(conflict_columns),
        index_where=index_where,
    )
    await db.execute(stmt)
