"""
Login and registration flows driven through the browser.

Fields are located from the page DOM rather than configured, so the same
flows work across the applications under test.
"""

import logging
import re
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from ..core.models import Credentials, ElementInfo, FormInfo, RegistrationResult
from .browser import BrowserDriver, BrowserError
from .dom_analyzer import DOMAnalyzer
from .fake_data_generator import FakeDataGenerator

logger = logging.getLogger(__name__)

LOGIN_PATH_MARKERS = ('login', 'signin', 'sign-in', 'log-in')
ERROR_TEXT_PATTERN = re.compile(
    r'invalid|incorrect|wrong password|failed|not recognized|try again|already (exists|taken|registered)',
    re.IGNORECASE,
)
ERROR_CONTAINER_PATTERN = re.compile(r'error|alert|danger|invalid|warning', re.IGNORECASE)
DENIED_STATUS_CODES = (401, 403, 404)
DENIED_PATH_MARKERS = ('/login', '/signin', '/unauthorized', '/forbidden')


class AuthenticationError(Exception):
    """Login or registration did not succeed."""


def is_login_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return any(marker in path for marker in LOGIN_PATH_MARKERS)


def is_access_denied(status_code: Optional[int], url: str) -> bool:
    """Denied means 401/403/404 or a redirect to a login or forbidden page."""
    if status_code in DENIED_STATUS_CODES:
        return True
    path = urlparse(url).path.lower()
    return any(marker in path for marker in DENIED_PATH_MARKERS)


def is_access_allowed(status_code: Optional[int], url: str) -> bool:
    return (status_code is None or status_code < 400) and not is_login_url(url)


def visible_error_message(soup: BeautifulSoup, analyzer: DOMAnalyzer) -> Optional[str]:
    """Text of a visible error/alert element that reads like a failure, if any."""
    for element in soup.find_all(True):
        marker = ' '.join(element.get('class', [])) + ' ' + element.get('role', '') + ' ' + element.get('id', '')
        if not ERROR_CONTAINER_PATTERN.search(marker):
            continue
        text = element.get_text(' ', strip=True)
        if text and ERROR_TEXT_PATTERN.search(text) and analyzer.is_visible(element):
            return text[:200]
    return None


class LoginFlow:
    """Log in through a login form."""

    def __init__(self, analyzer: Optional[DOMAnalyzer] = None):
        self.analyzer = analyzer or DOMAnalyzer()

    def find_login_fields(self, soup: BeautifulSoup) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """Locators for (username, password, submit) on a login page."""
        password = next(
            (p for p in soup.find_all('input', attrs={'type': 'password'}) if self.analyzer.is_visible(p)),
            None,
        )
        if password is None:
            return None, None, None

        scope = password.find_parent('form') or soup
        username = None
        for candidate in scope.find_all('input'):
            if candidate is password or not self.analyzer.is_visible(candidate):
                continue
            input_type = (candidate.get('type') or 'text').lower()
            if input_type not in ('text', 'email', 'tel'):
                continue
            hint = ' '.join(str(candidate.get(a, '')) for a in ('name', 'id', 'placeholder', 'autocomplete')).lower()
            if input_type == 'email' or any(k in hint for k in ('user', 'email', 'login', 'account')):
                username = candidate
                break
            if username is None:
                username = candidate

        submit = (scope.find(['button', 'input'], attrs={'type': 'submit'})
                  or scope.find('button'))

        return (
            self._locator(username, soup),
            self._locator(password, soup),
            self._locator(submit, soup),
        )

    def _locator(self, element: Optional[Tag], soup: BeautifulSoup) -> Optional[str]:
        if element is None:
            return None
        return self.analyzer.unique_locator(element, soup)

    async def login(self, driver: BrowserDriver, login_url: str, credentials: Credentials) -> str:
        """
        Log in and return the URL the browser landed on.

        Raises:
            AuthenticationError: If the form is missing or login is rejected
        """
        try:
            await driver.navigate(login_url)
            soup = self.analyzer.parse(await driver.content())
            username_locator, password_locator, submit_locator = self.find_login_fields(soup)
            if not password_locator or not username_locator:
                raise AuthenticationError(f"No login form found at {login_url}")

            await self._fill(driver, username_locator, credentials.username)
            await self._fill(driver, password_locator, credentials.password)
            if submit_locator and (submit := await driver.find(submit_locator)) is not None:
                await driver.click(submit)
            else:
                password_field = await driver.find(password_locator)
                if password_field is None:
                    raise AuthenticationError(f"Field {password_locator} disappeared before submitting")
                await driver.press(password_field, "Enter")
            await driver.wait_for_load_state("load")

            soup = self.analyzer.parse(await driver.content())
        except BrowserError as e:
            raise AuthenticationError(f"Login at {login_url} failed: {e}") from e

        error = visible_error_message(soup, self.analyzer)
        if error:
            raise AuthenticationError(f"Login rejected: {error}")
        still_on_form = self.find_login_fields(soup)[1] is not None
        if still_on_form and urlparse(driver.url).path == urlparse(login_url).path:
            raise AuthenticationError(f"Still on the login form after submitting at {login_url}")

        logger.info(f"Logged in as {credentials.username} at {login_url}")
        return driver.url

    async def _fill(self, driver: BrowserDriver, locator: str, value: str) -> None:
        element = await driver.find(locator)
        if element is None:
            raise AuthenticationError(f"Field {locator} is not interactable")
        await driver.fill(element, value)


class RegistrationFlow:
    """Create an account through a discovered registration form."""

    def __init__(self, fake_data: Optional[FakeDataGenerator] = None,
                 analyzer: Optional[DOMAnalyzer] = None):
        self.fake_data = fake_data or FakeDataGenerator()
        self.analyzer = analyzer or DOMAnalyzer()

    def _value_for(self, field: ElementInfo, identity: Dict[str, str]) -> Tuple[Optional[str], Optional[str]]:
        """Value to type into a field and which identity key it consumed."""
        hint = f"{field.name} {field.placeholder} {field.attributes.get('id', '')}".lower()
        input_type = (field.input_type or '').lower()

        if input_type == 'password' or 'password' in hint:
            return identity["password"], "password"
        if input_type == 'email' or 'email' in hint:
            return identity["email"], "email"
        if 'username' in hint or 'user_name' in hint or 'login' in hint:
            return identity["username"], "username"
        if 'first' in hint:
            return identity["first_name"], None
        if 'last' in hint or 'surname' in hint:
            return identity["last_name"], None
        if 'name' in hint:
            return identity["full_name"], None
        return self.fake_data.auto_fill(field.name, field.placeholder, field.input_type), None

    async def register(self, driver: BrowserDriver, form: FormInfo) -> RegistrationResult:
        """
        Fill and submit a registration form with generated data.

        Confirm-password fields receive the same password. The login
        identifier is the email when the form asks for one, otherwise the
        username.
        """
        identity = self.fake_data.generate_registration_data()
        used = set()

        try:
            await driver.navigate(form.page_url)
            for field in form.fields:
                element = await driver.find(field.locator)
                if element is None:
                    logger.debug(f"Registration field {field.locator} not interactable, skipping")
                    continue

                if field.input_type in ('checkbox', 'radio'):
                    if re.search(r'terms|agree|accept|consent', f"{field.name} {field.text}", re.IGNORECASE):
                        await driver.click(element)
                    continue
                if field.tag == 'select':
                    options = field.attributes.get('options') or []
                    if len(options) > 1:
                        await driver.select(element, options[1])
                    continue

                value, key = self._value_for(field, identity)
                if key:
                    used.add(key)
                await driver.fill(element, value)

            submit = await driver.find(form.submit_locator) if form.submit_locator else None
            if submit is None:
                return RegistrationResult(False, form.page_url, message="Registration form has no submit control")
            await driver.click(submit)
            await driver.wait_for_load_state("load")
            soup = self.analyzer.parse(await driver.content())
        except BrowserError as e:
            return RegistrationResult(False, form.page_url, message=f"Registration failed: {e}")

        login_id = identity["email"] if "email" in used or "username" not in used else identity["username"]
        error = visible_error_message(soup, self.analyzer)
        if error:
            return RegistrationResult(False, form.page_url, username=login_id, message=error)

        logger.info(f"Registered account {login_id} via {form.page_url}")
        return RegistrationResult(
            success=True,
            page_url=form.page_url,
            username=login_id,
            password=identity["password"],
            message="Account registered",
        )
