"""Tests for the /api/v1/security HTTP endpoints."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from riskwatch.dependencies import get_security_monitor
from riskwatch.main import app
from riskwatch.services.security_monitor import SecurityMonitor

PREFIX = "/api/v1/security"


@pytest_asyncio.fixture(scope="function")
async def client(monitor: SecurityMonitor) -> AsyncGenerator[AsyncClient, None]:
    """Test client wired to the in-memory engine."""

    async def override_get_security_monitor():
        return monitor

    app.dependency_overrides[get_security_monitor] = override_get_security_monitor

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


def _event_body(score: int = 80) -> dict:
    return {
        "type": "unauthorized_access",
        "title": "Restricted endpoint accessed",
        "description": "Admin route called without admin role",
        "user_id": "u-1",
        "risk_score": score,
        "indicators": ["Restricted endpoint"],
    }


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestEventEndpoints:
    """Tests for event listing, creation and lifecycle."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        response = await client.post(f"{PREFIX}/events", json=_event_body())
        assert response.status_code == 201
        created = response.json()
        assert created["threat_level"] == "high"
        assert created["status"] == "open"
        assert created["resolved_at"] is None

        response = await client.get(f"{PREFIX}/events/{created['id']}")
        assert response.status_code == 200
        assert response.json()["risk_score"] == 80

    @pytest.mark.asyncio
    async def test_create_rejects_empty_indicators(self, client):
        body = _event_body()
        body["indicators"] = []
        response = await client.post(f"{PREFIX}/events", json=body)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_unknown_is_404(self, client):
        response = await client.get(f"{PREFIX}/events/does-not-exist")
        assert response.status_code == 404
        assert "does-not-exist" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_list_with_filters(self, client):
        await client.post(f"{PREFIX}/events", json=_event_body(80))
        await client.post(f"{PREFIX}/events", json=_event_body(20))

        response = await client.get(f"{PREFIX}/events", params={"threat_level": "low"})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["pages"] == 1
        assert data["is_fallback"] is False
        assert data["items"][0]["risk_score"] == 20

    @pytest.mark.asyncio
    async def test_status_transition(self, client):
        created = (await client.post(f"{PREFIX}/events", json=_event_body())).json()

        response = await client.post(
            f"{PREFIX}/events/{created['id']}/status",
            json={"status": "resolved", "resolution_notes": "Revoked session", "actor": "analyst-1"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "resolved"
        assert data["resolved_at"] is not None
        assert data["resolution_notes"] == "Revoked session"

    @pytest.mark.asyncio
    async def test_status_unknown_event_is_404(self, client):
        response = await client.post(f"{PREFIX}/events/missing/status", json={"status": "investigating"})
        assert response.status_code == 404


class TestMetricsEndpoints:
    @pytest.mark.asyncio
    async def test_metrics(self, client):
        await client.post(f"{PREFIX}/events", json=_event_body(80))
        response = await client.get(f"{PREFIX}/metrics", params={"days": 7})
        assert response.status_code == 200
        data = response.json()
        assert data["total_events"] == 1
        assert data["events_by_threat_level"]["high"] == 1
        assert len(data["risk_trend"]) == 7

    @pytest.mark.asyncio
    async def test_metrics_days_validated(self, client):
        response = await client.get(f"{PREFIX}/metrics", params={"days": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_user_activity(self, client):
        await client.post(f"{PREFIX}/events", json=_event_body(80))
        response = await client.get(f"{PREFIX}/users/u-1/activity")
        assert response.status_code == 200
        assert response.json()["occurrence_count"] == 1

        response = await client.get(f"{PREFIX}/users/nobody/activity")
        assert response.status_code == 200
        assert response.json() is None


class TestDetectorEndpoints:
    """Tests for on-demand detector runs."""

    @pytest.mark.asyncio
    async def test_brute_force(self, client, failed_logins):
        failed_logins("10.0.0.5", 6)
        response = await client.post(f"{PREFIX}/detect/brute-force", json={"ip_address": "10.0.0.5"})
        assert response.status_code == 200
        data = response.json()
        assert data["detected"] is True
        assert data["event"]["risk_score"] == 60
        assert len(data["event"]["indicators"]) == 3

    @pytest.mark.asyncio
    async def test_brute_force_blank_ip_is_400(self, client):
        response = await client.post(f"{PREFIX}/detect/brute-force", json={"ip_address": "   "})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_privilege_escalation(self, client):
        response = await client.post(
            f"{PREFIX}/detect/privilege-escalation",
            json={
                "user_id": "u-3",
                "attempted_action": "manage_platform",
                "required_role": "PLATFORM_ADMIN",
                "user_role": "COMPANY_USER",
            },
        )
        data = response.json()
        assert data["detected"] is True
        assert data["event"]["threat_level"] == "high"
        assert data["event"]["resolved_at"] is None

    @pytest.mark.asyncio
    async def test_suspicious_login_first_login(self, client):
        response = await client.post(
            f"{PREFIX}/detect/suspicious-login",
            json={"user_id": "u-4", "ip_address": "203.0.113.7", "user_agent": "UA"},
        )
        assert response.json()["detected"] is True

    @pytest.mark.asyncio
    async def test_anomalous_behavior_quiet_user(self, client):
        response = await client.post(f"{PREFIX}/detect/anomalous-behavior", json={"user_id": "u-5"})
        assert response.status_code == 200
        assert response.json() == {"detected": False, "event": None}

    @pytest.mark.asyncio
    async def test_record_activity(self, client, activity_log):
        response = await client.post(
            f"{PREFIX}/activity",
            json={
                "action": "login_failed",
                "ip_address": "10.0.0.5",
                "success": False,
                "created_at": "2025-03-10T13:59:00Z",
            },
        )
        assert response.status_code == 201
        assert activity_log.records[-1].ip_address == "10.0.0.5"


class TestMonitorDependency:
    @pytest.mark.asyncio
    async def test_uninitialized_monitor_is_503(self):
        """Without startup wiring, endpoints report the monitor as unavailable."""
        app.dependency_overrides.clear()
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            response = await ac.get(f"{PREFIX}/events")
        assert response.status_code == 503
        assert response.json()["detail"] == "Security monitor not initialized"
