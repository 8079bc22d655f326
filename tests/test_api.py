"""HTTP API tests: routing, error envelopes and the abuse guard middleware."""

import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from starlette.requests import Request
from starlette.responses import Response

from app.db import AsyncSessionLocal
from app.middleware import abuse_guard
from app.middleware.abuse_guard import AbuseGuardMiddleware
from app.models import IPOperationLog

API = "/api/v1"
ADMIN = {"X-Admin-Key": "test-admin-key"}


def user(user_id: str = "user-1") -> dict:
    return {"X-User-Id": user_id}


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["database"] == "connected"
        assert body["scheduler"] == "stopped"

    @pytest.mark.asyncio
    async def test_plans_are_public(self, client):
        response = await client.get(f"{API}/quota/plans")
        assert response.status_code == 200
        assert [plan["plan_type"] for plan in response.json()] == ["free", "basic", "pro", "max"]


class TestQuotaEndpoints:
    @pytest.mark.asyncio
    async def test_missing_identity(self, client):
        response = await client.get(f"{API}/quota/usage")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "HTTP_ERROR"

    @pytest.mark.asyncio
    async def test_check_record_and_usage(self, client):
        response = await client.post(f"{API}/quota/check", json={"quota_type": "shares"}, headers=user())
        assert response.status_code == 200
        assert response.json()["allowed"] is True

        response = await client.post(
            f"{API}/quota/record",
            json={"quota_type": "shares", "action": "share_created", "amount": 2},
            headers=user(),
        )
        assert response.status_code == 200
        assert response.json()["success"] is True

        response = await client.get(f"{API}/quota/usage", headers=user())
        usage = {item["quota_type"]: item for item in response.json()["usage"]}
        assert usage["shares"]["used_amount"] == 2
        assert usage["shares"]["max_amount"] == 5

    @pytest.mark.asyncio
    async def test_invalid_body_uses_error_envelope(self, client):
        response = await client.post(
            f"{API}/quota/check", json={"quota_type": "shares", "amount": 0}, headers=user()
        )
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"]

    @pytest.mark.asyncio
    async def test_unknown_quota_type_on_record(self, client):
        response = await client.post(
            f"{API}/quota/record", json={"quota_type": "coffee", "action": "drink"}, headers=user()
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_invalid_metadata_on_record(self, client):
        response = await client.post(
            f"{API}/quota/record",
            json={
                "quota_type": "video_processing",
                "action": "video_processed",
                "metadata": {"video_duration": "long"},
            },
            headers=user(),
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

        response = await client.get(f"{API}/quota/usage", headers=user())
        usage = {item["quota_type"]: item for item in response.json()["usage"]}
        assert usage["video_processing"]["used_amount"] == 0

    @pytest.mark.asyncio
    async def test_video_cooldown_after_processing(self, client):
        video = {"video_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ", "video_duration": 5}

        response = await client.post(f"{API}/quota/video/check", json=video, headers=user())
        assert response.status_code == 200
        assert response.json()["allowed"] is True

        await client.post(
            f"{API}/quota/record",
            json={
                "quota_type": "video_processing",
                "action": "video_processed",
                "resource_id": video["video_url"],
                "metadata": {"video_duration": 5},
            },
            headers=user(),
        )

        # Same video through a short link
        response = await client.post(
            f"{API}/quota/video/check",
            json={"video_url": "https://youtu.be/dQw4w9WgXcQ"},
            headers=user(),
        )
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "COOLDOWN_ACTIVE"

    @pytest.mark.asyncio
    async def test_video_quota_exhausted(self, client):
        for i in range(3):
            await client.post(
                f"{API}/quota/record",
                json={"quota_type": "video_processing", "action": "video_processed", "resource_id": f"video-{i}"},
                headers=user(),
            )

        response = await client.post(f"{API}/quota/video/check", json={"video_url": "video-new"}, headers=user())
        assert response.status_code == 402
        error = response.json()["error"]
        assert error["code"] == "QUOTA_EXCEEDED"
        assert error["details"]["suggested_plan"] == "pro"

    @pytest.mark.asyncio
    async def test_alerts_can_be_marked_read(self, client):
        await client.post(
            f"{API}/quota/record",
            json={"quota_type": "shares", "action": "share_created", "amount": 4},
            headers=user(),
        )

        alerts = (await client.get(f"{API}/quota/alerts", headers=user())).json()
        assert [alert["alert_type"] for alert in alerts] == ["warning"]

        response = await client.post(
            f"{API}/quota/alerts/read", json={"alert_ids": [alerts[0]["id"]]}, headers=user()
        )
        assert response.json()["data"] == {"updated": 1}
        assert (await client.get(f"{API}/quota/alerts", headers=user())).json() == []


class TestSubscriptionEndpoints:
    @pytest.mark.asyncio
    async def test_upgrade_then_reject_cheaper_upgrade(self, client):
        response = await client.post(f"{API}/subscriptions/upgrade", json={"plan_type": "pro"}, headers=user())
        assert response.status_code == 200
        assert response.json()["plan_type"] == "pro"

        response = await client.post(f"{API}/subscriptions/upgrade", json={"plan_type": "basic"}, headers=user())
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_TRANSITION"

        overview = (await client.get(f"{API}/subscriptions/me", headers=user())).json()
        assert overview["active"]["plan_type"] == "pro"
        assert overview["plan"]["monthly_video_quota"] == 50

        history = (await client.get(f"{API}/subscriptions/history", headers=user())).json()
        assert [(h["from_plan"], h["to_plan"]) for h in history] == [("free", "pro")]

    @pytest.mark.asyncio
    async def test_unknown_plan(self, client):
        response = await client.post(f"{API}/subscriptions/upgrade", json={"plan_type": "gold"}, headers=user())
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_downgrade_is_scheduled(self, client):
        await client.post(f"{API}/subscriptions/upgrade", json={"plan_type": "pro"}, headers=user())
        response = await client.post(f"{API}/subscriptions/downgrade", json={"plan_type": "basic"}, headers=user())
        assert response.status_code == 200
        assert response.json()["status"] == "pending"

        overview = (await client.get(f"{API}/subscriptions/me", headers=user())).json()
        assert overview["active"]["plan_type"] == "pro"
        assert overview["pending"]["plan_type"] == "basic"

    @pytest.mark.asyncio
    async def test_refund(self, client):
        await client.post(f"{API}/subscriptions/upgrade", json={"plan_type": "pro"}, headers=user())
        response = await client.post(f"{API}/subscriptions/refund", json={}, headers=user())
        assert response.status_code == 200
        body = response.json()
        assert body["refunded_plan"] == "pro"
        assert 0 < body["refund_amount"] <= 20.67

    @pytest.mark.asyncio
    async def test_daily_plan_change_limit(self, client):
        for plan_type in ("basic", "pro", "max"):
            response = await client.post(
                f"{API}/subscriptions/upgrade", json={"plan_type": plan_type}, headers=user()
            )
            assert response.status_code == 200

        response = await client.post(f"{API}/subscriptions/downgrade", json={"plan_type": "pro"}, headers=user())
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"


class TestAbuseGuard:
    @pytest.mark.asyncio
    async def test_blacklisted_user_is_rejected(self, client):
        response = await client.post(
            f"{API}/admin/blacklist",
            json={"type": "user", "value": "bad-user", "reason": "fraud"},
            headers=ADMIN,
        )
        assert response.status_code == 200

        response = await client.get(f"{API}/quota/usage", headers=user("bad-user"))
        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "BLACKLISTED"
        assert error["message"] == "fraud"

        assert (await client.get(f"{API}/quota/usage", headers=user("good-user"))).status_code == 200

    @pytest.mark.asyncio
    async def test_blacklisted_ip_is_rejected(self, client):
        await client.post(
            f"{API}/admin/blacklist",
            json={"type": "ip", "value": "198.51.100.7", "reason": "scraping", "duration_minutes": 30},
            headers=ADMIN,
        )

        headers = {**user(), "X-Forwarded-For": "198.51.100.7, 10.0.0.1"}
        response = await client.get(f"{API}/quota/usage", headers=headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_ip_plan_change_limit(self, client):
        # Free users cannot cancel; failed attempts still count against the IP
        for _ in range(5):
            response = await client.post(f"{API}/subscriptions/cancel", headers=user())
            assert response.status_code == 409

        response = await client.post(f"{API}/subscriptions/cancel", headers=user())
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"
        assert int(response.headers["Retry-After"]) > 0

        # Another client IP is unaffected
        headers = {**user(), "X-Forwarded-For": "192.0.2.99"}
        assert (await client.post(f"{API}/subscriptions/cancel", headers=headers)).status_code == 409

    @pytest.mark.asyncio
    async def test_denied_attempts_are_logged(self, client):
        headers = {**user(), "X-Forwarded-For": "203.0.113.5"}
        statuses = [
            (await client.post(f"{API}/subscriptions/cancel", headers=headers)).status_code for _ in range(15)
        ]
        assert statuses == [409] * 5 + [429] * 10

        async with AsyncSessionLocal() as db:
            result = await db.execute(
                select(IPOperationLog.success, IPOperationLog.operation_data).where(
                    IPOperationLog.ip_address == "203.0.113.5"
                )
            )
            rows = result.all()
        assert len(rows) == 15
        assert not any(success for success, _ in rows)
        assert sum(1 for _, data in rows if data == {"limit_exceeded": True}) == 10

    @pytest.mark.asyncio
    async def test_sampled_scan_is_kept_until_done(self, monkeypatch):
        captured = []
        monkeypatch.setattr(abuse_guard, "capture_exception", captured.append)

        class FailingScanner:
            def should_sample(self):
                return True

            async def scan_and_ban(self, ip_address):
                raise RuntimeError("scan failed")

        class OpenBlacklist:
            async def check_blacklist(self, list_type, value):
                return SimpleNamespace(blocked=False, reason=None)

        middleware = AbuseGuardMiddleware(None, blacklist=OpenBlacklist(), abuse_prevention=FailingScanner())
        request = Request(
            {
                "type": "http",
                "method": "GET",
                "path": f"{API}/quota/usage",
                "headers": [],
                "query_string": b"",
                "client": ("198.51.100.20", 4000),
            }
        )

        async def call_next(request):
            return Response(status_code=200)

        response = await middleware.dispatch(request, call_next)
        assert response.status_code == 200
        assert len(middleware._scan_tasks) == 1

        await asyncio.gather(*middleware._scan_tasks, return_exceptions=True)
        await asyncio.sleep(0)
        assert middleware._scan_tasks == set()
        assert [str(exc) for exc in captured] == ["scan failed"]


class TestAdminEndpoints:
    @pytest.mark.asyncio
    async def test_requires_admin_key(self, client):
        assert (await client.get(f"{API}/admin/blacklist")).status_code == 401
        response = await client.get(f"{API}/admin/blacklist", headers={"X-Admin-Key": "wrong"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_blacklist_lifecycle(self, client):
        await client.post(
            f"{API}/admin/blacklist",
            json={"type": "email", "value": "spam@example.com", "reason": "spam"},
            headers=ADMIN,
        )

        entries = (await client.get(f"{API}/admin/blacklist?type=email", headers=ADMIN)).json()
        assert [entry["value"] for entry in entries] == ["spam@example.com"]

        response = await client.delete(
            f"{API}/admin/blacklist", params={"type": "email", "value": "spam@example.com"}, headers=ADMIN
        )
        assert response.status_code == 200

        response = await client.delete(
            f"{API}/admin/blacklist", params={"type": "email", "value": "spam@example.com"}, headers=ADMIN
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_maintenance_jobs(self, client):
        response = await client.post(f"{API}/admin/subscriptions/sweep", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["processed"] == 0

        response = await client.post(f"{API}/admin/cleanup", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["cleaned_logs"] == 0

    @pytest.mark.asyncio
    async def test_anomaly_scan_and_plan_changes(self, client):
        await client.post(f"{API}/subscriptions/upgrade", json={"plan_type": "pro"}, headers=user())

        report = (await client.get(f"{API}/admin/anomaly/127.0.0.1", headers=ADMIN)).json()
        assert report["suspicious"] is False
        assert report["total_operations"] == 1

        changes = (await client.get(f"{API}/admin/plan-changes", headers=ADMIN)).json()
        assert changes[0]["change_type"] == "upgrade"
