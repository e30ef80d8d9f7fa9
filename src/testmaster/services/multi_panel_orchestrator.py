"""
Multi-Panel Testing Orchestrator.

Runs authentication, discovery, generation and execution separately for
the landing, user and admin panels, then checks role-based access and
cross-panel data consistency and writes one consolidated report.

Phase names are prefixed with the panel (``landing:discovery``,
``user:authentication``, ``admin:execution``) and followed by ``rbac``,
``data_consistency`` and ``report``.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..core.config_loader import get_healing_config
from ..core.models import (
    ApplicationMap,
    AuthenticationConfig,
    Credentials,
    DataConsistencyResult,
    DepthLimits,
    DEPTH_LIMITS,
    ExecutionResults,
    FailureDetail,
    FormInfo,
    HealingConfig,
    MultiPanelTestingConfig,
    MultiPanelTestReport,
    PageInfo,
    PanelTestResult,
    PanelType,
    RBACTestResult,
    SessionState,
    UserAuthStrategy,
    WebsiteMap,
)
from .ai_client import AIClient
from .auth_flow import AuthenticationError, LoginFlow, RegistrationFlow, is_login_url
from .autonomous_orchestrator import PhaseRunner
from .cancellation import CancellationToken
from .data_consistency_checker import DataConsistencyChecker
from .healing_coordinator import HealingCoordinator, create_healing_coordinator
from .healing_event_store import HealingEventStore
from .locator_catalog import LocatorCatalog
from .progress import ProgressReporter
from .rbac_tester import ADMIN, ANONYMOUS, USER, RBACTester, RoleLogin, restricted_pages
from .report_generator import ReportGenerator
from .test_executor import ExecutionOptions, TestExecutor
from .test_generator import TestGenerator
from .website_crawler import WebsiteCrawler

logger = logging.getLogger(__name__)

PANEL_NAMES = {
    PanelType.LANDING: "Landing Page (Public)",
    PanelType.USER: "User Panel",
    PanelType.ADMIN: "Admin Panel",
}


@dataclass
class PanelPlan:
    panel: PanelType
    url: str
    authenticated: bool

    @property
    def name(self) -> str:
        return PANEL_NAMES[self.panel]

    def phase(self, step: str) -> str:
        return f"{self.panel.value}:{step}"


def panel_coverage(tests: int, pages: int) -> float:
    """Tests per page relative to three tests per page, capped at 100."""
    if pages <= 0:
        return 0.0
    return float(min(100, round(tests / pages * 100 / 3)))


def multi_panel_phases(config: MultiPanelTestingConfig) -> List[str]:
    """Ordered phase names for a multi-panel session."""
    phases = [f"{PanelType.LANDING.value}:{step}" for step in ("discovery", "generation", "execution")]
    if config.user_panel.enabled:
        phases += [f"{PanelType.USER.value}:{step}"
                   for step in ("authentication", "discovery", "generation", "execution")]
    phases += [f"{PanelType.ADMIN.value}:{step}"
               for step in ("authentication", "discovery", "generation", "execution")]
    return phases + ["rbac", "data_consistency", "report"]


class MultiPanelOrchestrator(PhaseRunner):
    """Tests the landing, user and admin panels of one application."""

    def __init__(self, session_id: str, config: MultiPanelTestingConfig, browser_factory,
                 reporter: Optional[ProgressReporter] = None,
                 token: Optional[CancellationToken] = None,
                 event_store: Optional[HealingEventStore] = None,
                 ai_client: Optional[AIClient] = None,
                 healing_config: Optional[HealingConfig] = None,
                 coordinator: Optional[HealingCoordinator] = None,
                 website_crawler: Optional[WebsiteCrawler] = None,
                 generator: Optional[TestGenerator] = None,
                 report_generator: Optional[ReportGenerator] = None,
                 login_flow: Optional[LoginFlow] = None,
                 registration_flow: Optional[RegistrationFlow] = None,
                 rbac_tester: Optional[RBACTester] = None,
                 consistency_checker: Optional[DataConsistencyChecker] = None):
        super().__init__(session_id, reporter or ProgressReporter(session_id, multi_panel_phases(config)), token)
        self.config = config
        self.browser_factory = browser_factory
        self.healing_config = healing_config or get_healing_config()
        self.catalog = LocatorCatalog()
        if coordinator is None and config.enable_healing and event_store is not None:
            coordinator = create_healing_coordinator(event_store, self.catalog, ai_client, self.metrics)
        self.coordinator = coordinator
        self.website_crawler = website_crawler or WebsiteCrawler(capture_screenshots=config.capture_screenshots)
        self.generator = generator or TestGenerator(ai_client=ai_client)
        self.report_generator = report_generator or ReportGenerator()
        self.login_flow = login_flow or LoginFlow()
        self.registration_flow = registration_flow or RegistrationFlow()
        self.rbac_tester = rbac_tester or RBACTester(browser_factory, self.login_flow)
        self.consistency_checker = consistency_checker or DataConsistencyChecker()

        self.snapshots: Dict[str, str] = {}
        self.panels: Dict[PanelType, PanelTestResult] = {}
        self.logins: Dict[PanelType, AuthenticationConfig] = {}
        self.landing_map: Optional[WebsiteMap] = None

    @property
    def limits(self) -> DepthLimits:
        limits = DEPTH_LIMITS[self.config.depth]
        if self.config.max_pages_per_panel:
            return DepthLimits(
                max_pages=min(self.config.max_pages_per_panel, limits.max_pages),
                max_link_depth=limits.max_link_depth,
                max_interactions_per_page=limits.max_interactions_per_page,
            )
        return limits

    def plans(self) -> List[PanelPlan]:
        plans = [PanelPlan(PanelType.LANDING, self.config.landing_url, authenticated=False)]
        if self.config.user_panel.enabled:
            plans.append(PanelPlan(PanelType.USER, self.config.user_panel.url or self.config.landing_url,
                                   authenticated=True))
        plans.append(PanelPlan(PanelType.ADMIN, self.config.admin_url, authenticated=True))
        return plans

    async def run(self) -> MultiPanelTestReport:
        """
        Test every panel, then the cross-panel checks.

        Raises:
            PhaseError: A phase failed; state is ``error``
            SessionCancelledError: The session was cancelled; state is ``cancelled``
        """
        await self.browser_factory.start()
        try:
            return await self.guarded(self._pipeline)
        finally:
            await self.browser_factory.stop()

    async def _pipeline(self) -> MultiPanelTestReport:
        started = time.time()
        for plan in self.plans():
            self.panels[plan.panel] = await self.test_panel(plan)

        rbac = None
        if self.config.test_rbac:
            rbac = await self.run_phase("rbac", SessionState.ANALYSIS, self.check_access_control)

        consistency = None
        if self.config.test_data_consistency:
            consistency = await self.run_phase("data_consistency", SessionState.ANALYSIS, self.check_consistency)

        report = await self.run_phase("report", SessionState.REPORT, self.build_report,
                                      (time.time() - started) * 1000, rbac, consistency)

        self.state = SessionState.COMPLETED
        self.reporter.complete("Multi-panel testing completed", {"summary": report.summary, "files": report.files})
        return report

    async def test_panel(self, plan: PanelPlan) -> PanelTestResult:
        logger.info(f"Testing {plan.name} at {plan.url}")
        login = None
        if plan.authenticated:
            state = SessionState.REGISTRATION if self._auto_registers(plan) else SessionState.DISCOVERY
            login = await self.run_phase(plan.phase("authentication"), state, self.authenticate, plan)
            self.logins[plan.panel] = login

        discovery_started = time.time()
        site_map = await self.run_phase(plan.phase("discovery"), SessionState.DISCOVERY,
                                        self.discover, plan, login)
        discovery_duration = (time.time() - discovery_started) * 1000
        if plan.panel == PanelType.LANDING:
            self.landing_map = site_map

        tests = await self.run_phase(plan.phase("generation"), SessionState.GENERATION,
                                     self.generate, plan, site_map)

        execution_started = time.time()
        execution = await self.run_phase(plan.phase("execution"), SessionState.EXECUTION,
                                         self.execute, plan, tests, login)

        result = PanelTestResult(
            panel_type=plan.panel,
            panel_name=plan.name,
            pages=site_map.pages,
            discovery_duration=discovery_duration,
            tests_generated=len(tests),
            test_categories=self._categories(tests),
            tests_passed=len(execution.passed),
            tests_failed=len(execution.failed),
            tests_healed=len(execution.healed),
            execution_duration=(time.time() - execution_started) * 1000,
            coverage=panel_coverage(len(tests), len(site_map.pages)),
            failures=[
                FailureDetail(
                    test_name=r.name,
                    url=r.page_url or plan.url,
                    error=r.error or "Unknown error",
                    screenshot=r.screenshots[0] if r.screenshots else None,
                )
                for r in execution.failed
            ],
            screenshots=[path for r in execution.results for path in r.screenshots],
            video=next((r.video for r in execution.results if r.video), None),
        )
        logger.info(f"{plan.name}: {result.tests_passed} passed, {result.tests_failed} failed, "
                    f"{result.tests_healed} healed")
        return result

    def _auto_registers(self, plan: PanelPlan) -> bool:
        return plan.panel == PanelType.USER and \
            self.config.user_panel.auth_strategy == UserAuthStrategy.AUTO_REGISTER

    def login_url_for(self, panel: PanelType) -> str:
        if self.config.login_url:
            return self.config.login_url
        if panel == PanelType.ADMIN:
            return self.config.admin_url
        return self.config.user_panel.url or self.config.landing_url

    async def authenticate(self, plan: PanelPlan) -> AuthenticationConfig:
        """
        Establish working credentials for a panel.

        Raises:
            AuthenticationError: If login or registration fails
        """
        phase = plan.phase("authentication")
        login_url = self.login_url_for(plan.panel)

        if self._auto_registers(plan):
            credentials = await self.register_user(phase, login_url)
        else:
            if plan.panel == PanelType.ADMIN:
                credentials = self.config.admin_credentials
            else:
                credentials = self.config.user_panel.credentials
            if credentials is None:
                raise AuthenticationError(f"No credentials configured for the {plan.name}")
            self.reporter.emit(phase, 20, f"Logging in as {credentials.username}")
            async with self.browser_factory.open_driver() as driver:
                await self.login_flow.login(driver, login_url, credentials)

        self.reporter.emit(phase, 100, f"Authenticated for the {plan.name}")
        return AuthenticationConfig(login_url=login_url, credentials=credentials)

    async def register_user(self, phase: str, login_url: str) -> Credentials:
        """Register through the landing registration form, logging in if the site did not."""
        forms: List[FormInfo] = self.landing_map.forms_of_kind('registration') if self.landing_map else []
        if not forms:
            raise AuthenticationError("Auto-registration requested but the landing page has no registration form")

        self.reporter.emit(phase, 10, f"Registering a user at {forms[0].page_url}")
        async with self.browser_factory.open_driver() as driver:
            registration = await self.registration_flow.register(driver, forms[0])
            if not registration.success:
                raise AuthenticationError(f"User registration failed: {registration.message}")
            credentials = Credentials(registration.username, registration.password)
            self.reporter.emit(phase, 60, f"Registered {registration.username}")

            soup = self.login_flow.analyzer.parse(await driver.content())
            if is_login_url(driver.url) or self.login_flow.find_login_fields(soup)[1] is not None:
                await self.login_flow.login(driver, login_url, credentials)
        return credentials

    async def discover(self, plan: PanelPlan, login: Optional[AuthenticationConfig]) -> WebsiteMap:
        async with self.browser_factory.open_driver() as driver:
            if login is not None:
                await self.login_flow.login(driver, login.login_url, login.credentials)
            site_map = await self.website_crawler.crawl(
                driver,
                plan.url,
                self.limits,
                on_progress=self.progress_callback(plan.phase("discovery")),
                token=self.token,
                authenticated=login is not None,
            )

        for page in site_map.pages:
            if page.dom_snapshot:
                self.snapshots[page.url] = page.dom_snapshot
            for element in page.elements:
                self.catalog.register_element(element)
        return site_map

    async def generate(self, plan: PanelPlan, site_map: WebsiteMap):
        # Access boundaries are covered by the rbac phase
        return await self.generator.generate(
            ApplicationMap(website=site_map),
            use_ai=self.config.ai_analysis_enabled,
            test_rbac=False,
            on_progress=self.progress_callback(plan.phase("generation")),
        )

    async def execute(self, plan: PanelPlan, tests, login: Optional[AuthenticationConfig]) -> ExecutionResults:
        executor = TestExecutor(
            self.browser_factory,
            coordinator=self.coordinator if self.config.enable_healing else None,
            healing_config=self.healing_config,
            catalog=self.catalog,
            login_flow=self.login_flow,
            session_id=self.session_id,
        )
        options = ExecutionOptions(
            parallel_workers=self.config.parallel_workers,
            enable_healing=self.config.enable_healing,
            capture_screenshots=self.config.capture_screenshots,
            capture_video=self.config.capture_video,
            authentication=login,
        )
        return await executor.execute(
            tests, options, self.snapshots,
            on_progress=self.progress_callback(plan.phase("execution")),
            token=self.token,
        )

    def _pages(self, panel: PanelType) -> List[PageInfo]:
        result = self.panels.get(panel)
        return result.pages if result else []

    async def check_access_control(self) -> RBACTestResult:
        landing = self._pages(PanelType.LANDING)
        user = self._pages(PanelType.USER)
        admin_only = restricted_pages(self._pages(PanelType.ADMIN), landing, user)
        user_only = restricted_pages(user, landing)

        logins = {ANONYMOUS: RoleLogin(ANONYMOUS)}
        admin_login = self.logins[PanelType.ADMIN]
        logins[ADMIN] = RoleLogin(ADMIN, admin_login.login_url, admin_login.credentials)
        if PanelType.USER in self.logins:
            user_login = self.logins[PanelType.USER]
            logins[USER] = RoleLogin(USER, user_login.login_url, user_login.credentials)

        return await self.rbac_tester.test_access_control(
            admin_only, user_only, logins,
            on_progress=self.progress_callback("rbac"),
            token=self.token,
        )

    async def check_consistency(self) -> DataConsistencyResult:
        result = self.consistency_checker.check({panel: r.pages for panel, r in self.panels.items()})
        self.reporter.emit("data_consistency", 100, f"{result.failed} consistency issues found",
                           {"total_checks": result.total_checks})
        return result

    def build_summary(self, rbac: Optional[RBACTestResult],
                      consistency: Optional[DataConsistencyResult]) -> Dict:
        panels = list(self.panels.values())
        summary = {
            "total_panels": len(panels),
            "total_pages": sum(len(p.pages) for p in panels),
            "total_tests": sum(p.tests_generated for p in panels),
            "total_passed": sum(p.tests_passed for p in panels),
            "total_failed": sum(p.tests_failed for p in panels),
            "total_healed": sum(p.tests_healed for p in panels),
            "overall_coverage": round(sum(p.coverage for p in panels) / len(panels), 2) if panels else 0.0,
        }
        if rbac is not None:
            summary["rbac"] = {"total_checks": rbac.total_checks, "passed": rbac.passed, "failed": rbac.failed}
        if consistency is not None:
            summary["data_consistency"] = {
                "total_checks": consistency.total_checks,
                "passed": consistency.passed,
                "failed": consistency.failed,
            }
        return summary

    async def build_report(self, duration: float, rbac: Optional[RBACTestResult],
                           consistency: Optional[DataConsistencyResult]) -> MultiPanelTestReport:
        report = MultiPanelTestReport(
            session_id=self.session_id,
            duration=duration,
            summary=self.build_summary(rbac, consistency),
            panels={panel.value: result for panel, result in self.panels.items()},
            rbac=rbac,
            data_consistency=consistency,
        )
        report.files = self.report_generator.generate_multi_panel(report)
        self.reporter.emit("report", 100, "Report generated", {"files": report.files})
        return report

    @staticmethod
    def _categories(tests) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for test in tests:
            counts[test.category.value] = counts.get(test.category.value, 0) + 1
        return counts
