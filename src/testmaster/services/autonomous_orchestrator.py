"""
Autonomous Testing Orchestrator.

A strictly sequential phase machine:

    idle -> discovery -> (registration) -> generation -> execution
         -> analysis -> report -> completed

Any phase failure moves the session to ``error`` and is reported once;
cancellation moves it to ``cancelled``. Browser contexts are opened per
phase with ``async with`` so they are closed on every exit path.
"""

import asyncio
import logging
import time
import traceback
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..core.config_loader import get_healing_config
from ..core.logging_config import get_healing_logger
from ..core.metrics import MetricsCollector, get_metrics_collector
from ..core.models import (
    AnalysisResult,
    ApplicationMap,
    AutonomousTestingConfig,
    ExecutionResults,
    GeneratedTest,
    HealingConfig,
    RegistrationResult,
    Report,
    SessionState,
)
from .ai_client import AIClient
from .api_crawler import APICrawler
from .auth_flow import LoginFlow, RegistrationFlow
from .cancellation import CancellationToken, SessionCancelledError
from .failure_analyzer import FailureAnalyzer
from .healing_coordinator import HealingCoordinator, create_healing_coordinator
from .healing_event_store import HealingEventStore
from .locator_catalog import LocatorCatalog
from .progress import ProgressReporter
from .report_generator import ReportGenerator
from .test_executor import ExecutionOptions, TestExecutor
from .test_generator import TestGenerator
from .website_crawler import WebsiteCrawler

logger = logging.getLogger(__name__)

AUTONOMOUS_PHASES = ("discovery", "registration", "generation", "execution", "analysis", "report")

PhaseProgress = Callable[[float, str, Dict], None]


class PhaseError(Exception):
    """A phase raised; carries the phase name and the original error."""

    def __init__(self, phase: str, cause: BaseException):
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase} phase failed: {cause}")


class PhaseRunner:
    """Phase bookkeeping shared by the single- and multi-panel orchestrators."""

    def __init__(self, session_id: str, reporter: ProgressReporter,
                 token: Optional[CancellationToken] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.session_id = session_id
        self.reporter = reporter
        self.token = token or CancellationToken()
        self.metrics = metrics or get_metrics_collector()
        self.state = SessionState.IDLE
        self.error: Optional[str] = None
        self.error_traceback: Optional[str] = None
        self.healing_logger = get_healing_logger("orchestrator", session_id=session_id)

    def progress_callback(self, phase: str, start: float = 0.0, end: float = 100.0) -> PhaseProgress:
        """Callback that maps a service's 0-100 progress onto [start, end] of a phase."""
        def callback(progress: float, message: str, details: Optional[Dict] = None) -> None:
            self.reporter.emit(phase, start + (end - start) * progress / 100, message, details)
        return callback

    async def run_phase(self, phase: str, state: SessionState,
                        operation: Callable[..., Awaitable[Any]], *args) -> Any:
        """
        Run one phase, converting any failure into PhaseError.

        Cancellation passes through untouched.
        """
        self.token.raise_if_cancelled()
        self.state = state
        self.reporter.emit(phase, 0, f"Starting {phase}")
        self.healing_logger.log_operation_start(phase)
        started = time.time()
        try:
            result = await operation(*args)
        except (SessionCancelledError, asyncio.CancelledError, PhaseError):
            raise
        except Exception as e:
            duration = time.time() - started
            self.healing_logger.log_operation_failure(phase, duration, str(e), error_code=type(e).__name__)
            self.metrics.record_phase(phase, duration, success=False)
            raise PhaseError(phase, e) from e
        duration = time.time() - started
        self.healing_logger.log_operation_success(phase, duration)
        self.metrics.record_phase(phase, duration, success=True)
        return result

    def mark_cancelled(self) -> None:
        self.state = SessionState.CANCELLED
        self.reporter.cancelled(self.token.reason or "Session cancelled")
        logger.info(f"Session {self.session_id} cancelled")

    def mark_failed(self, error: PhaseError) -> None:
        self.state = SessionState.ERROR
        self.error = str(error)
        self.error_traceback = ''.join(traceback.format_exception(
            type(error.cause), error.cause, error.cause.__traceback__))
        self.reporter.error(self.error, {"phase": error.phase, "error_type": type(error.cause).__name__})
        logger.error(f"Session {self.session_id} failed in {error.phase}: {error.cause}")

    async def guarded(self, pipeline: Callable[[], Awaitable[Any]]) -> Any:
        """Run a pipeline, settling the terminal state on failure or cancellation."""
        try:
            return await pipeline()
        except (SessionCancelledError, asyncio.CancelledError):
            self.mark_cancelled()
            raise
        except PhaseError as e:
            self.mark_failed(e)
            raise


class AutonomousTestingOrchestrator(PhaseRunner):
    """Crawl, generate, execute, analyze and report for one application."""

    def __init__(self, session_id: str, config: AutonomousTestingConfig, browser_factory,
                 reporter: Optional[ProgressReporter] = None,
                 token: Optional[CancellationToken] = None,
                 event_store: Optional[HealingEventStore] = None,
                 ai_client: Optional[AIClient] = None,
                 healing_config: Optional[HealingConfig] = None,
                 coordinator: Optional[HealingCoordinator] = None,
                 website_crawler: Optional[WebsiteCrawler] = None,
                 api_crawler: Optional[APICrawler] = None,
                 generator: Optional[TestGenerator] = None,
                 analyzer: Optional[FailureAnalyzer] = None,
                 report_generator: Optional[ReportGenerator] = None,
                 login_flow: Optional[LoginFlow] = None,
                 registration_flow: Optional[RegistrationFlow] = None):
        super().__init__(session_id, reporter or ProgressReporter(session_id, AUTONOMOUS_PHASES), token)
        self.config = config
        self.browser_factory = browser_factory
        self.ai_client = ai_client
        self.healing_config = healing_config or get_healing_config()
        self.catalog = LocatorCatalog()
        if coordinator is None and config.enable_healing and event_store is not None:
            coordinator = create_healing_coordinator(event_store, self.catalog, ai_client, self.metrics)
        self.coordinator = coordinator
        self.website_crawler = website_crawler or WebsiteCrawler(capture_screenshots=config.capture_screenshots)
        self.api_crawler = api_crawler or APICrawler()
        self.generator = generator or TestGenerator(ai_client=ai_client)
        self.analyzer = analyzer or FailureAnalyzer(ai_client)
        self.report_generator = report_generator or ReportGenerator()
        self.login_flow = login_flow or LoginFlow()
        self.registration_flow = registration_flow or RegistrationFlow()
        self.snapshots: Dict[str, str] = {}

    async def run(self) -> Report:
        """
        Run every phase in order.

        Raises:
            PhaseError: A phase failed; state is ``error``
            SessionCancelledError: The session was cancelled; state is ``cancelled``
        """
        await self.browser_factory.start()
        try:
            return await self.guarded(self._pipeline)
        finally:
            await self.browser_factory.stop()

    async def _pipeline(self) -> Report:
        app_map = await self.run_phase("discovery", SessionState.DISCOVERY, self.discover)

        registration = None
        if self.config.auto_register and app_map.website and app_map.website.forms_of_kind('registration'):
            registration = await self.run_phase("registration", SessionState.REGISTRATION, self.register, app_map)

        tests = await self.run_phase("generation", SessionState.GENERATION, self.generate, app_map)
        execution = await self.run_phase("execution", SessionState.EXECUTION, self.execute, tests)
        analyses = await self.run_phase("analysis", SessionState.ANALYSIS, self.analyze, execution)
        report = await self.run_phase("report", SessionState.REPORT, self.build_report,
                                      app_map, tests, execution, analyses, registration)

        self.state = SessionState.COMPLETED
        self.reporter.complete("Autonomous testing completed", {"summary": report.summary, "files": report.files})
        return report

    async def discover(self) -> ApplicationMap:
        app_map = ApplicationMap()
        auth = self.config.authentication
        website_share = 60 if self.config.api_url else 100

        if self.config.website_url:
            async with self.browser_factory.open_driver() as driver:
                if auth is not None:
                    await self.login_flow.login(driver, auth.login_url, auth.credentials)
                    self.reporter.emit("discovery", 2, "Logged in for discovery")
                app_map.website = await self.website_crawler.crawl(
                    driver,
                    self.config.website_url,
                    self.config.limits,
                    on_progress=self.progress_callback("discovery", 0, website_share),
                    token=self.token,
                    authenticated=auth is not None,
                )

        if self.config.api_url:
            app_map.api = await self.api_crawler.discover(
                self.config.api_url,
                on_progress=self.progress_callback("discovery", website_share, 100),
                token=self.token,
            )

        self.index_application_map(app_map)
        self.reporter.emit("discovery", 100, "Discovery completed", {
            "pages": app_map.page_count,
            "endpoints": app_map.endpoint_count,
        })
        return app_map

    def index_application_map(self, app_map: ApplicationMap) -> None:
        """Register discovered locators and keep page snapshots for healing."""
        if app_map.website is None:
            return
        for page in app_map.website.pages:
            if page.dom_snapshot:
                self.snapshots[page.url] = page.dom_snapshot
            for element in page.elements:
                self.catalog.register_element(element)

    async def register(self, app_map: ApplicationMap) -> RegistrationResult:
        form = app_map.website.forms_of_kind('registration')[0]
        self.reporter.emit("registration", 10, f"Registering an account at {form.page_url}")
        async with self.browser_factory.open_driver() as driver:
            result = await self.registration_flow.register(driver, form)
        self.reporter.emit("registration", 100, result.message, result.to_dict())
        return result

    async def generate(self, app_map: ApplicationMap) -> List[GeneratedTest]:
        return await self.generator.generate(
            app_map,
            use_ai=self.config.ai_analysis_enabled,
            test_rbac=self.config.test_rbac,
            on_progress=self.progress_callback("generation"),
        )

    def build_executor(self) -> TestExecutor:
        return TestExecutor(
            self.browser_factory,
            coordinator=self.coordinator if self.config.enable_healing else None,
            healing_config=self.healing_config,
            catalog=self.catalog,
            login_flow=self.login_flow,
            session_id=self.session_id,
        )

    async def execute(self, tests: List[GeneratedTest]) -> ExecutionResults:
        options = ExecutionOptions(
            parallel_workers=self.config.parallel_workers,
            enable_healing=self.config.enable_healing,
            capture_screenshots=self.config.capture_screenshots,
            capture_video=self.config.capture_video,
            authentication=self.config.authentication,
        )
        results = await self.build_executor().execute(
            tests, options, self.snapshots,
            on_progress=self.progress_callback("execution"),
            token=self.token,
        )
        self.reporter.emit("execution", 100, "Execution completed", {
            "passed": len(results.passed),
            "failed": len(results.failed),
            "healed": len(results.healed),
        })
        return results

    async def analyze(self, execution: ExecutionResults) -> List[AnalysisResult]:
        return await self.analyzer.analyze(
            execution.results,
            use_ai=self.config.ai_analysis_enabled,
            on_progress=self.progress_callback("analysis"),
            token=self.token,
        )

    async def build_report(self, app_map: ApplicationMap, tests: List[GeneratedTest],
                           execution: ExecutionResults, analyses: List[AnalysisResult],
                           registration: Optional[RegistrationResult]) -> Report:
        report = self.report_generator.generate(
            self.session_id, app_map, tests, execution, analyses,
            registration=registration, config=self.config.to_dict(),
        )
        self.reporter.emit("report", 100, "Report generated", {"files": report.files})
        return report
