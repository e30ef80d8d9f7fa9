"""
Role-based access checks across panels.

Every role browses in its own browser context, so cookies and storage of
one role never leak into another's checks.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from ..core.models import AccessControlResult, Credentials, PageInfo, RBACTestResult
from .auth_flow import LoginFlow, is_access_allowed, is_access_denied
from .browser import BrowserDriver, BrowserError
from .cancellation import CancellationToken
from .website_crawler import normalize_url

logger = logging.getLogger(__name__)

MAX_PAGES_PER_CHECK = 10

ANONYMOUS = "anonymous"
USER = "user"
ADMIN = "admin"


@dataclass(frozen=True)
class RoleLogin:
    """How a role signs in; anonymous roles have no credentials."""
    role: str
    login_url: Optional[str] = None
    credentials: Optional[Credentials] = None


@dataclass(frozen=True)
class AccessCheck:
    role: str
    url: str
    expected_access: bool
    page_kind: str


def restricted_pages(pages: Iterable[PageInfo], *public: Iterable[PageInfo]) -> List[str]:
    """URLs of ``pages`` that none of the ``public`` page lists also expose."""
    visible = {normalize_url(p.url) for group in public for p in group}
    urls = []
    for page in pages:
        if page.status_code is not None and page.status_code >= 400:
            continue
        url = normalize_url(page.url)
        if url not in visible and url not in urls:
            urls.append(url)
    return urls


class RBACTester:
    """Checks that each role sees exactly the pages it should."""

    def __init__(self, browser_factory, login_flow: Optional[LoginFlow] = None):
        self.browser_factory = browser_factory
        self.login_flow = login_flow or LoginFlow()

    def plan(self, admin_only: List[str], user_only: List[str],
             has_user: bool) -> Dict[str, List[AccessCheck]]:
        """Checks to run, grouped by role."""
        admin_pages = admin_only[:MAX_PAGES_PER_CHECK]
        user_pages = user_only[:MAX_PAGES_PER_CHECK]

        checks: Dict[str, List[AccessCheck]] = {ANONYMOUS: [], USER: [], ADMIN: []}
        checks[ANONYMOUS] += [AccessCheck(ANONYMOUS, url, False, ADMIN) for url in admin_pages]
        checks[ANONYMOUS] += [AccessCheck(ANONYMOUS, url, False, USER) for url in user_pages]
        if has_user:
            checks[USER] += [AccessCheck(USER, url, False, ADMIN) for url in admin_pages]
        checks[ADMIN] += [AccessCheck(ADMIN, url, True, ADMIN) for url in admin_pages]
        return {role: role_checks for role, role_checks in checks.items() if role_checks}

    async def test_access_control(self, admin_only: List[str], user_only: List[str],
                                  logins: Dict[str, RoleLogin],
                                  on_progress: Optional[Callable[[float, str, Dict], None]] = None,
                                  token: Optional[CancellationToken] = None) -> RBACTestResult:
        """
        Run the access checks.

        Args:
            admin_only: Pages only the admin panel exposes
            user_only: Pages only the user panel exposes
            logins: Sign-in details per role; a missing user entry skips
                the user-on-admin checks
        """
        plan = self.plan(admin_only, user_only, has_user=USER in logins)
        total = sum(len(role_checks) for role_checks in plan.values())
        result = RBACTestResult()

        for role, role_checks in plan.items():
            if token is not None:
                token.raise_if_cancelled()
            login = logins.get(role) or RoleLogin(role)
            async with self.browser_factory.open_driver() as driver:
                if login.credentials is not None:
                    await self.login_flow.login(driver, login.login_url, login.credentials)
                for check in role_checks:
                    if token is not None:
                        token.raise_if_cancelled()
                    result.results.append(await self.check_access(driver, check))
                    if on_progress:
                        on_progress(len(result.results) / total * 100,
                                    f"Checked {role} access to {check.url}",
                                    {"role": role, "url": check.url})

        insecure = [r for r in result.results if not r.passed and not r.expected_access]
        for finding in insecure:
            logger.warning(f"Access control issue: {finding.role} reached {finding.url}")
        logger.info(f"RBAC checks: {result.passed}/{result.total_checks} passed")
        return result

    async def check_access(self, driver: BrowserDriver, check: AccessCheck) -> AccessControlResult:
        test_name = f"{check.role} accessing {check.page_kind} page"
        try:
            status_code = await driver.navigate(check.url)
        except BrowserError as e:
            # A page that cannot load is out of reach for this role
            return AccessControlResult(
                test_name=test_name,
                url=check.url,
                role=check.role,
                expected_access=check.expected_access,
                actual_access=False,
                status_code=None,
                message=f"Navigation failed: {e}",
            )

        landed = driver.url
        if check.expected_access:
            actual = is_access_allowed(status_code, landed)
        else:
            actual = not is_access_denied(status_code, landed)

        if actual == check.expected_access:
            message = "Access granted" if actual else f"Access correctly denied ({status_code})"
        elif actual:
            message = f"{check.role} reached a restricted page ({status_code})"
        else:
            message = f"Access denied unexpectedly ({status_code})"

        return AccessControlResult(
            test_name=test_name,
            url=check.url,
            role=check.role,
            expected_access=check.expected_access,
            actual_access=actual,
            status_code=status_code,
            message=message,
        )
