"""
Tests for multi-panel testing: per-panel phases, access control between
roles, cross-panel data consistency and the consolidated report.
"""

import json

import pytest

from src.testmaster.core.models import (
    Credentials,
    HealingConfig,
    MultiPanelTestingConfig,
    PanelType,
    SessionState,
    UserAuthStrategy,
    UserPanelConfig,
)
from src.testmaster.services.autonomous_orchestrator import PhaseError
from src.testmaster.services.multi_panel_orchestrator import (
    MultiPanelOrchestrator,
    multi_panel_phases,
    panel_coverage,
)
from tests.utils.fake_browser import BASE_URL, DASHBOARD_HTML, LOGIN_HTML, FakeBrowserFactory, FakePage

ADMIN_HTML = """
<html><head><title>Admin</title></head><body>
<h1>Control panel</h1>
<a href="/admin/catalog">Catalog</a>
<a href="/logout">Logout</a>
</body></html>
"""

ADMIN_CATALOG_HTML = """
<html><head><title>Catalog admin</title></head><body>
<a href="/admin">Back</a>
<table id="admin-products">
  <tr><th>Name</th><th>Price</th><th>Actions</th></tr>
  <tr><td>Widget</td><td>9.99</td><td>Edit</td></tr>
  <tr><td>Gadget</td><td>24.99</td><td>Edit</td></tr>
</table>
</body></html>
"""

ADMIN_CREDENTIALS = Credentials("root", "adm1n!")


@pytest.fixture
def panel_pages(site_pages):
    """The shop with an admin area only root may open."""
    site_pages[f"{BASE_URL}/login"] = FakePage(
        LOGIN_HTML, accounts={"alice": "s3cret!", "root": "adm1n!"}, after_login=f"{BASE_URL}/dashboard"
    )
    site_pages[f"{BASE_URL}/dashboard"] = FakePage(
        DASHBOARD_HTML, allowed_users={"alice", "root"}, denied_redirect=f"{BASE_URL}/login"
    )
    site_pages[f"{BASE_URL}/admin"] = FakePage(
        ADMIN_HTML, allowed_users={"root"}, denied_redirect=f"{BASE_URL}/login"
    )
    site_pages[f"{BASE_URL}/admin/catalog"] = FakePage(
        ADMIN_CATALOG_HTML, allowed_users={"root"}, denied_redirect=f"{BASE_URL}/login"
    )
    return site_pages


@pytest.fixture
def panel_factory(panel_pages):
    return FakeBrowserFactory(panel_pages)


def make_config(**overrides):
    values = dict(
        landing_url=f"{BASE_URL}/",
        admin_url=f"{BASE_URL}/admin",
        admin_credentials=ADMIN_CREDENTIALS,
        login_url=f"{BASE_URL}/login",
        enable_healing=False,
        capture_screenshots=False,
    )
    values.update(overrides)
    return MultiPanelTestingConfig(**values)


def make_orchestrator(factory, report_generator, config=None):
    return MultiPanelOrchestrator(
        "panels-1",
        config or make_config(),
        factory,
        healing_config=HealingConfig(),
        report_generator=report_generator,
    )


def phase_sequence(reporter):
    phases = []
    for update in reporter.history:
        if not phases or phases[-1] != update.phase:
            phases.append(update.phase)
    return phases


class TestPhasePlan:

    def test_phases_without_user_panel(self):
        assert multi_panel_phases(make_config()) == [
            "landing:discovery", "landing:generation", "landing:execution",
            "admin:authentication", "admin:discovery", "admin:generation", "admin:execution",
            "rbac", "data_consistency", "report",
        ]

    def test_user_panel_phases_come_before_admin(self):
        config = make_config(user_panel=UserPanelConfig(enabled=True, credentials=Credentials("alice", "s3cret!")))

        phases = multi_panel_phases(config)

        assert phases.index("user:authentication") == 3
        assert phases.index("user:execution") < phases.index("admin:authentication")

    @pytest.mark.parametrize("tests, pages, expected", [
        (6, 2, 100.0),
        (3, 2, 50.0),
        (30, 1, 100.0),
        (5, 0, 0.0),
    ])
    def test_panel_coverage(self, tests, pages, expected):
        assert panel_coverage(tests, pages) == expected


class TestMultiPanelRun:

    @pytest.mark.asyncio
    async def test_landing_and_admin_panels(self, panel_factory, report_generator):
        orchestrator = make_orchestrator(panel_factory, report_generator)

        report = await orchestrator.run()

        assert phase_sequence(orchestrator.reporter) == [
            "landing:discovery", "landing:generation", "landing:execution",
            "admin:authentication", "admin:discovery", "admin:generation", "admin:execution",
            "rbac", "data_consistency", "report", "completed",
        ]
        assert orchestrator.state == SessionState.COMPLETED
        assert set(report.panels) == {"landing", "admin"}

        admin = report.panels["admin"]
        assert [p.url for p in admin.pages] == [f"{BASE_URL}/admin", f"{BASE_URL}/admin/catalog"]
        assert all(p.requires_auth for p in admin.pages)
        assert report.summary["total_panels"] == 2
        assert report.summary["total_pages"] == 6
        assert panel_factory.started == 1 and panel_factory.stopped == 1
        assert panel_factory.open_contexts == 0

    @pytest.mark.asyncio
    async def test_roles_see_only_their_pages(self, panel_factory, report_generator):
        orchestrator = make_orchestrator(panel_factory, report_generator)

        report = await orchestrator.run()

        rbac = report.rbac
        assert rbac.total_checks == 4
        assert rbac.failed == 0
        by_role = {(r.role, r.url): r for r in rbac.results}
        anonymous = by_role[("anonymous", f"{BASE_URL}/admin")]
        assert anonymous.expected_access is False and anonymous.actual_access is False
        assert by_role[("admin", f"{BASE_URL}/admin/catalog")].actual_access is True
        assert report.summary["rbac"] == {"total_checks": 4, "passed": 4, "failed": 0}

    @pytest.mark.asyncio
    async def test_public_admin_page_is_flagged(self, panel_pages, panel_factory, report_generator):
        panel_pages[f"{BASE_URL}/admin/catalog"].allowed_users = None
        orchestrator = make_orchestrator(panel_factory, report_generator)

        report = await orchestrator.run()

        failures = [r for r in report.rbac.results if not r.passed]
        assert [(r.role, r.url) for r in failures] == [("anonymous", f"{BASE_URL}/admin/catalog")]
        assert "reached a restricted page" in failures[0].message

    @pytest.mark.asyncio
    async def test_price_mismatch_between_panels(self, panel_factory, report_generator):
        orchestrator = make_orchestrator(panel_factory, report_generator)

        report = await orchestrator.run()

        consistency = report.data_consistency
        assert consistency.total_checks == 2
        assert len(consistency.issues) == 1
        issue = consistency.issues[0]
        assert issue.panels == [PanelType.LANDING, PanelType.ADMIN]
        assert issue.expected == ["gadget", "19.99"]
        assert issue.actual == ["gadget", "24.99"]
        assert "price" in issue.message

    @pytest.mark.asyncio
    async def test_user_panel_with_provided_credentials(self, panel_factory, report_generator):
        config = make_config(user_panel=UserPanelConfig(
            enabled=True, url=f"{BASE_URL}/dashboard", credentials=Credentials("alice", "s3cret!")))
        orchestrator = make_orchestrator(panel_factory, report_generator, config)

        report = await orchestrator.run()

        assert set(report.panels) == {"landing", "user", "admin"}
        assert report.panels["user"].pages[0].url == f"{BASE_URL}/dashboard"
        user_checks = [r for r in report.rbac.results if r.role == "user"]
        assert len(user_checks) == 2
        assert all(r.passed for r in user_checks)
        anonymous_on_dashboard = [r for r in report.rbac.results
                                  if r.role == "anonymous" and r.url == f"{BASE_URL}/dashboard"]
        assert len(anonymous_on_dashboard) == 1

    @pytest.mark.asyncio
    async def test_optional_checks_can_be_disabled(self, panel_factory, report_generator):
        config = make_config(test_rbac=False, test_data_consistency=False)
        orchestrator = make_orchestrator(panel_factory, report_generator, config)

        report = await orchestrator.run()

        phases = phase_sequence(orchestrator.reporter)
        assert "rbac" not in phases and "data_consistency" not in phases
        assert report.rbac is None and report.data_consistency is None
        assert "rbac" not in report.summary

    @pytest.mark.asyncio
    async def test_consolidated_report_files(self, panel_factory, report_generator, tmp_path):
        orchestrator = make_orchestrator(panel_factory, report_generator)

        report = await orchestrator.run()

        assert report.files["html"].endswith("multi_panel_report.html")
        data = json.loads((tmp_path / "reports" / "panels-1" / "multi_panel_report.json").read_text())
        assert set(data["panels"]) == {"landing", "admin"}
        assert data["rbac_tests"]["total_checks"] == 4
        assert data["data_consistency"]["failed"] == 1
        assert "adm1n!" not in json.dumps(data)
        completed = orchestrator.reporter.history[-1]
        assert completed.details["files"] == report.files


class TestMultiPanelFailures:

    @pytest.mark.asyncio
    async def test_wrong_admin_password(self, panel_factory, report_generator):
        config = make_config(admin_credentials=Credentials("root", "guess"))
        orchestrator = make_orchestrator(panel_factory, report_generator, config)

        with pytest.raises(PhaseError) as excinfo:
            await orchestrator.run()

        assert excinfo.value.phase == "admin:authentication"
        assert orchestrator.state == SessionState.ERROR
        assert orchestrator.reporter.history[-1].details["error_type"] == "AuthenticationError"
        assert panel_factory.open_contexts == 0

    @pytest.mark.asyncio
    async def test_auto_register_without_registration_form(self, panel_factory, report_generator):
        config = make_config(user_panel=UserPanelConfig(enabled=True, auth_strategy=UserAuthStrategy.AUTO_REGISTER))
        orchestrator = make_orchestrator(panel_factory, report_generator, config)

        with pytest.raises(PhaseError) as excinfo:
            await orchestrator.run()

        assert excinfo.value.phase == "user:authentication"
        assert "registration form" in orchestrator.error

    @pytest.mark.asyncio
    async def test_missing_user_credentials(self, panel_factory, report_generator):
        config = make_config(user_panel=UserPanelConfig(enabled=True))
        orchestrator = make_orchestrator(panel_factory, report_generator, config)

        with pytest.raises(PhaseError) as excinfo:
            await orchestrator.run()

        assert excinfo.value.phase == "user:authentication"
        assert "No credentials" in orchestrator.error
