"""
Tests for the autonomous testing and healing API endpoints.
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.testmaster.api.autonomous_endpoints import progress_events
from src.testmaster.api.autonomous_endpoints import router as autonomous_router
from src.testmaster.api.healing_endpoints import router as healing_router
from src.testmaster.core import config_loader as config_loader_module
from src.testmaster.core.config_loader import HealingConfigLoader
from src.testmaster.core.models import (
    HealingEventData,
    HealingStatistics,
    HealingStrategyName,
    ProgressUpdate,
    SessionState,
    TestingDepth,
    UserAuthStrategy,
)
from src.testmaster.services.healing_event_store import get_healing_event_store
from src.testmaster.services.session_registry import SessionLimitError, get_session_registry


@pytest.fixture
def registry():
    registry = Mock()
    registry.create_autonomous = AsyncMock(return_value=Mock(session_id="session-1"))
    registry.create_multi_panel = AsyncMock(return_value=Mock(session_id="session-2"))
    registry.cancel = AsyncMock(return_value=True)
    registry.get.return_value = None
    registry.active_count = 0
    return registry


@pytest.fixture
def store():
    store = Mock()
    store.get_healing_statistics = AsyncMock(return_value=HealingStatistics(days=7, total_attempts=4,
                                                                            successful_heals=3))
    store.query = AsyncMock(return_value=[])
    store.get = AsyncMock(return_value=None)
    store.approve = AsyncMock(return_value=None)
    return store


@pytest.fixture
def app(registry, store):
    """Create FastAPI app with both routers and in-memory collaborators."""
    app = FastAPI()
    app.include_router(autonomous_router)
    app.include_router(healing_router)
    app.dependency_overrides[get_session_registry] = lambda: registry
    app.dependency_overrides[get_healing_event_store] = lambda: store
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def finished_session(state, result=None, error=None):
    session = Mock()
    session.session_id = "session-1"
    session.state = state
    session.is_running = not state.is_terminal
    session.result = result
    session.error_payload.return_value = {
        "session_id": "session-1", "state": state.value, "error": error, "traceback": "Traceback ...",
    }
    return session


def update(phase, progress=0.0, message="working"):
    return ProgressUpdate(phase, progress, message)


def event(**overrides):
    values = dict(test_case_id="login-001", step_index=1, failed_locator="#old", healed_locator="#new",
                  strategy=HealingStrategyName.FALLBACK, confidence=0.8, auto_applied=False, id=9)
    values.update(overrides)
    return HealingEventData(**values)


class TestStartEndpoints:

    def test_start_autonomous(self, client, registry):
        response = client.post("/autonomous/start", json={
            "website_url": "http://shop.test",
            "depth": "deep",
            "authentication": {"login_url": "http://shop.test/login",
                               "credentials": {"username": "alice", "password": "s3cret!"}},
        })

        assert response.status_code == 200
        assert response.json() == {"session_id": "session-1", "status": "started"}
        config = registry.create_autonomous.await_args.args[0]
        assert config.depth == TestingDepth.DEEP
        assert config.authentication.credentials.username == "alice"

    def test_start_without_targets(self, client):
        response = client.post("/autonomous/start", json={"depth": "shallow"})

        assert response.status_code == 400

    def test_unknown_depth_is_rejected(self, client):
        response = client.post("/autonomous/start", json={"website_url": "http://shop.test", "depth": "bottomless"})

        assert response.status_code == 422

    def test_session_limit(self, client, registry):
        registry.create_autonomous.side_effect = SessionLimitError("Maximum of 5 concurrent sessions reached")

        response = client.post("/autonomous/start", json={"website_url": "http://shop.test"})

        assert response.status_code == 429
        assert "Maximum of 5" in response.json()["detail"]

    def test_start_multi_panel(self, client, registry):
        response = client.post("/autonomous/multi-panel/start", json={
            "landing_url": "http://shop.test/",
            "admin_url": "http://shop.test/admin",
            "admin_credentials": {"username": "root", "password": "adm1n!"},
            "user_panel": {"enabled": True, "auth_strategy": "auto_register"},
        })

        assert response.status_code == 200
        assert response.json()["session_id"] == "session-2"
        config = registry.create_multi_panel.await_args.args[0]
        assert config.user_panel.auth_strategy == UserAuthStrategy.AUTO_REGISTER
        assert config.test_rbac is True

    def test_provided_user_panel_needs_credentials(self, client, registry):
        response = client.post("/autonomous/multi-panel/start", json={
            "landing_url": "http://shop.test/",
            "admin_url": "http://shop.test/admin",
            "admin_credentials": {"username": "root", "password": "adm1n!"},
            "user_panel": {"enabled": True},
        })

        assert response.status_code == 400
        registry.create_multi_panel.assert_not_called()


class TestSessionEndpoints:

    def test_unknown_session(self, client):
        for path in ("/autonomous/nope/status", "/autonomous/nope/result"):
            assert client.get(path).status_code == 404
        assert client.post("/autonomous/nope/cancel").status_code == 404

    def test_status(self, client, registry):
        session = Mock()
        session.status.return_value = {"session_id": "session-1", "state": "execution", "progress": 40.0}
        registry.get.return_value = session

        response = client.get("/autonomous/session-1/status")

        assert response.json()["state"] == "execution"

    def test_list_sessions(self, client, registry):
        session = Mock()
        session.status.return_value = {"session_id": "session-1"}
        registry.list.return_value = [session]
        registry.active_count = 1

        data = client.get("/autonomous/sessions").json()

        assert data == {"sessions": [{"session_id": "session-1"}], "total": 1, "active": 1}

    def test_result_while_running(self, client, registry):
        registry.get.return_value = finished_session(SessionState.EXECUTION)

        response = client.get("/autonomous/session-1/result")

        assert response.status_code == 409
        assert "still execution" in response.json()["detail"]

    def test_completed_result(self, client, registry):
        report = Mock()
        report.to_dict.return_value = {"summary": {"total": 3}}
        registry.get.return_value = finished_session(SessionState.COMPLETED, result=report)

        data = client.get("/autonomous/session-1/result").json()

        assert data["status"] == "completed"
        assert data["report"]["summary"]["total"] == 3

    def test_errored_result_carries_details(self, client, registry):
        registry.get.return_value = finished_session(SessionState.ERROR, error="Phase 'discovery' failed: boom")

        response = client.get("/autonomous/session-1/result")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "error"
        assert data["error"] == "Phase 'discovery' failed: boom"
        assert data["traceback"].startswith("Traceback")

    def test_cancelled_result_has_no_report(self, client, registry):
        registry.get.return_value = finished_session(SessionState.CANCELLED)

        data = client.get("/autonomous/session-1/result").json()

        assert data == {"status": "cancelled", "session_id": "session-1", "report": None}

    def test_cancel(self, client, registry):
        registry.get.return_value = finished_session(SessionState.EXECUTION)

        response = client.post("/autonomous/session-1/cancel")

        assert response.json() == {"session_id": "session-1", "status": "cancelled"}
        registry.cancel.assert_awaited_once_with("session-1")

    def test_cancel_finished_session(self, client, registry):
        registry.get.return_value = finished_session(SessionState.COMPLETED)
        registry.cancel.return_value = False

        assert client.post("/autonomous/session-1/cancel").status_code == 409


class TestProgressEvents:

    async def collect(self, history, queue, disconnected=False, heartbeat=1.0):
        unsubscribe = Mock()
        events = [event async for event in progress_events(
            history, queue, AsyncMock(return_value=disconnected), unsubscribe, heartbeat=heartbeat)]
        return events, unsubscribe

    @pytest.mark.asyncio
    async def test_finished_session_replays_history(self):
        history = [update("discovery", 50), update("completed", 100, "done")]

        events, unsubscribe = await self.collect(history, asyncio.Queue())

        assert [json.loads(e["data"])["phase"] for e in events] == ["discovery", "completed"]
        assert all(e["event"] == "progress" for e in events)
        unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_live_updates_follow_history(self):
        queue = asyncio.Queue()
        queue.put_nowait(update("generation", 10))
        queue.put_nowait(update("error", 100, "boom"))
        queue.put_nowait(update("report", 0))

        events, _ = await self.collect([update("discovery", 100)], queue)

        assert [json.loads(e["data"])["phase"] for e in events] == ["discovery", "generation", "error"]

    @pytest.mark.asyncio
    async def test_heartbeat_while_idle(self):
        queue = asyncio.Queue()
        unsubscribe = Mock()
        disconnected = AsyncMock(side_effect=[False, False, True])

        events = [event async for event in progress_events([], queue, disconnected, unsubscribe, heartbeat=0.01)]

        assert [e["event"] for e in events] == ["heartbeat", "heartbeat"]
        unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_disconnected_client_stops_stream(self):
        events, unsubscribe = await self.collect([update("discovery", 5)], asyncio.Queue(), disconnected=True)

        assert len(events) == 1
        unsubscribe.assert_called_once()


class TestHealingEndpoints:

    def test_statistics(self, client, store):
        data = client.get("/healing/statistics?days=7").json()

        assert data["statistics"]["total_attempts"] == 4
        assert data["statistics"]["success_rate"] == 0.75
        store.get_healing_statistics.assert_awaited_once_with(7)

    def test_statistics_window_is_bounded(self, client):
        assert client.get("/healing/statistics?days=0").status_code == 422

    def test_events_are_filtered(self, client, store):
        store.query.return_value = [event(strategy=HealingStrategyName.SIMILARITY, confidence=0.82, id=3)]

        data = client.get("/healing/events?test_case_id=login-001&strategy=SIMILARITY&pending_only=true").json()

        assert data["total"] == 1
        assert data["events"][0]["healed_locator"] == "#new"
        filters = store.query.await_args.args[0]
        assert filters.test_case_id == "login-001"
        assert filters.strategy == HealingStrategyName.SIMILARITY
        assert filters.pending_only is True
        assert filters.since is None

    def test_approve_unknown_event(self, client):
        response = client.post("/healing/events/9/approval", json={"approved": True})

        assert response.status_code == 404

    def test_approve_event_not_awaiting_review(self, client, store):
        store.get.return_value = event(auto_applied=True)

        response = client.post("/healing/events/9/approval", json={"approved": True, "approved_by": "qa"})

        assert response.status_code == 409
        store.approve.assert_awaited_once_with(9, True, "qa")

    def test_approve_event(self, client, store):
        store.get.return_value = event()
        store.approve.return_value = event(approved=True, approved_by="qa")

        data = client.post("/healing/events/9/approval", json={"approved": True}).json()

        assert data["event"]["approved"] is True


class TestHealingConfigEndpoints:

    @pytest.fixture(autouse=True)
    def isolated_config(self, tmp_path, monkeypatch):
        loader = HealingConfigLoader(str(tmp_path / "self_healing.yaml"))
        monkeypatch.setattr(config_loader_module, "config_loader", loader)
        return loader

    def test_defaults(self, client):
        data = client.get("/healing/config").json()

        assert data["configuration"]["auto_apply_threshold"] == 0.9
        assert data["configuration"]["suggestion_threshold"] == {"min": 0.7, "max": 0.9}

    def test_update_is_saved(self, client, tmp_path):
        response = client.post("/healing/config", json={
            "auto_apply_threshold": 0.85, "enabled_strategies": ["FALLBACK", "VISUAL"],
        })

        assert response.status_code == 200
        configuration = response.json()["configuration"]
        assert configuration["suggestion_threshold"]["max"] == 0.85
        assert configuration["enabled_strategies"] == ["FALLBACK", "VISUAL"]
        assert (tmp_path / "self_healing.yaml").exists()
        assert client.get("/healing/config").json()["configuration"]["auto_apply_threshold"] == 0.85

    def test_invalid_band_is_rejected(self, client, tmp_path):
        response = client.post("/healing/config", json={"suggestion_min": 0.95})

        assert response.status_code == 400
        assert "suggestion_threshold.min" in response.json()["detail"]
        assert not (tmp_path / "self_healing.yaml").exists()

    def test_out_of_range_value(self, client):
        assert client.post("/healing/config", json={"auto_apply_threshold": 1.5}).status_code == 422
