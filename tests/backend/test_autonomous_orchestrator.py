"""
Tests for the autonomous testing pipeline: phase order, failure and
cancellation handling, and resource cleanup.
"""

import os
from unittest.mock import AsyncMock, Mock

import pytest

from src.testmaster.core.models import (
    AutonomousTestingConfig,
    HealingConfig,
    SessionState,
    TestingDepth,
)
from src.testmaster.services.autonomous_orchestrator import AutonomousTestingOrchestrator, PhaseError
from src.testmaster.services.cancellation import SessionCancelledError
from src.testmaster.services.test_generator import TestGenerator
from tests.utils.fake_browser import BASE_URL, HOME_HTML, FakeBrowserFactory, FakePage

SOLO_HTML = "<html><head><title>Solo</title></head><body><h1>Hello</h1></body></html>"

SIGNUP_HTML = """
<html><head><title>Join</title></head><body>
<form id="signup-form">
  <input type="email" name="email" id="email">
  <input type="password" name="password" id="password">
  <input type="password" name="confirm_password" id="confirm_password">
  <button type="submit" id="signup-btn">Join</button>
</form>
</body></html>
"""


def phase_sequence(reporter):
    """Distinct phases in the order they were entered."""
    phases = []
    for update in reporter.history:
        if not phases or phases[-1] != update.phase:
            phases.append(update.phase)
    return phases


def make_orchestrator(browser_factory, report_generator, session_id="session-1", event_store=None,
                      generator=None, **config_overrides):
    values = dict(website_url=BASE_URL, depth=TestingDepth.SHALLOW, capture_screenshots=False,
                  ai_analysis_enabled=False)
    values.update(config_overrides)
    return AutonomousTestingOrchestrator(
        session_id,
        AutonomousTestingConfig(**values),
        browser_factory,
        event_store=event_store,
        healing_config=HealingConfig(),
        report_generator=report_generator,
        generator=generator,
    )


class TestHappyPath:

    @pytest.mark.asyncio
    async def test_single_page_without_healing(self, report_generator):
        factory = FakeBrowserFactory({f"{BASE_URL}/": FakePage(SOLO_HTML)})
        orchestrator = make_orchestrator(factory, report_generator, enable_healing=False)

        report = await orchestrator.run()

        assert phase_sequence(orchestrator.reporter) == [
            "discovery", "generation", "execution", "analysis", "report", "completed",
        ]
        assert orchestrator.state == SessionState.COMPLETED
        assert orchestrator.coordinator is None
        assert report.summary["healed"] == 0
        assert report.summary["total"] == 1
        assert report.summary["passed"] == 1
        assert os.path.exists(report.files["html"])
        assert factory.started == 1 and factory.stopped == 1
        assert factory.open_contexts == 0

    @pytest.mark.asyncio
    async def test_progress_is_ordered_within_phases(self, browser_factory, report_generator, event_store):
        orchestrator = make_orchestrator(browser_factory, report_generator, event_store=event_store)

        await orchestrator.run()

        history = orchestrator.reporter.history
        for previous, current in zip(history, history[1:]):
            if previous.phase == current.phase:
                assert current.progress >= previous.progress
        assert history[-1].phase == "completed"
        assert history[-1].progress == 100

    @pytest.mark.asyncio
    async def test_shop_run_indexes_discovery(self, browser_factory, report_generator, event_store):
        orchestrator = make_orchestrator(browser_factory, report_generator, event_store=event_store)

        report = await orchestrator.run()

        assert orchestrator.coordinator is not None
        assert len(orchestrator.catalog) > 0
        assert set(orchestrator.snapshots) == {
            f"{BASE_URL}/", f"{BASE_URL}/products", f"{BASE_URL}/contact", f"{BASE_URL}/login",
        }
        assert report.details["discovery"]["pages"] == 4
        assert report.summary["total"] == report.details["generated_tests"]
        assert browser_factory.open_contexts == 0

    @pytest.mark.asyncio
    async def test_auto_registration_phase(self, site_pages, browser_factory, report_generator):
        site_pages[f"{BASE_URL}/"] = FakePage(HOME_HTML.replace("<h1>", '<a href="/signup">Join us</a><h1>'))
        site_pages[f"{BASE_URL}/signup"] = FakePage(SIGNUP_HTML, clicks={"id=signup-btn": f"{BASE_URL}/"})
        orchestrator = make_orchestrator(browser_factory, report_generator, auto_register=True,
                                         enable_healing=False)

        report = await orchestrator.run()

        assert phase_sequence(orchestrator.reporter)[:3] == ["discovery", "registration", "generation"]
        assert report.details["registration"]["success"] is True
        assert "@" in report.details["registration"]["username"]

    @pytest.mark.asyncio
    async def test_registration_skipped_without_form(self, browser_factory, report_generator):
        orchestrator = make_orchestrator(browser_factory, report_generator, auto_register=True,
                                         enable_healing=False)

        report = await orchestrator.run()

        assert "registration" not in phase_sequence(orchestrator.reporter)
        assert report.details["registration"] is None


class TestFailure:

    @pytest.mark.asyncio
    async def test_phase_failure_ends_in_single_error(self, browser_factory, report_generator):
        generator = Mock(spec=TestGenerator)
        generator.generate = AsyncMock(side_effect=RuntimeError("template exploded"))
        orchestrator = make_orchestrator(browser_factory, report_generator, generator=generator,
                                         enable_healing=False)

        with pytest.raises(PhaseError) as excinfo:
            await orchestrator.run()

        assert excinfo.value.phase == "generation"
        assert orchestrator.state == SessionState.ERROR
        assert "template exploded" in orchestrator.error
        assert "RuntimeError" in orchestrator.error_traceback

        history = orchestrator.reporter.history
        errors = [u for u in history if u.phase == "error"]
        assert len(errors) == 1
        assert errors[0].details == {"phase": "generation", "error_type": "RuntimeError"}
        assert history[-1].phase == "error"
        assert "execution" not in phase_sequence(orchestrator.reporter)
        assert browser_factory.stopped == 1
        assert browser_factory.open_contexts == 0

    @pytest.mark.asyncio
    async def test_unreachable_site_still_completes(self, report_generator):
        factory = FakeBrowserFactory({})
        orchestrator = make_orchestrator(factory, report_generator, enable_healing=False)

        report = await orchestrator.run()

        assert orchestrator.state == SessionState.COMPLETED
        assert report.summary["total"] == 0


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, browser_factory, report_generator):
        orchestrator = make_orchestrator(browser_factory, report_generator, enable_healing=False)
        orchestrator.token.cancel("Stop")

        with pytest.raises(SessionCancelledError):
            await orchestrator.run()

        assert orchestrator.state == SessionState.CANCELLED
        assert [u.phase for u in orchestrator.reporter.history] == ["cancelled"]
        assert orchestrator.reporter.history[0].message == "Stop"

    @pytest.mark.asyncio
    async def test_cancel_during_execution_closes_contexts(self, browser_factory, report_generator):
        orchestrator = make_orchestrator(browser_factory, report_generator, enable_healing=False)

        def cancel_on_execution(update):
            if update.phase == "execution":
                orchestrator.token.cancel("User pressed stop")

        orchestrator.reporter.subscribe(cancel_on_execution)

        with pytest.raises(SessionCancelledError):
            await orchestrator.run()

        assert orchestrator.state == SessionState.CANCELLED
        assert orchestrator.reporter.history[-1].phase == "cancelled"
        assert "analysis" not in phase_sequence(orchestrator.reporter)
        assert browser_factory.open_contexts == 0
        assert browser_factory.stopped == 1
