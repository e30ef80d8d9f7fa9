"""Utility functions for locators and healing contexts."""

import re
from typing import Optional, Tuple

from .models.healing_models import (
    HealingContext,
    Identifier,
    LocatorOption,
    LocatorType
)


_PREFIXES = {
    "id": LocatorType.ID,
    "css": LocatorType.CSS,
    "xpath": LocatorType.XPATH,
    "text": LocatorType.TEXT,
    "role": LocatorType.ROLE,
    "testid": LocatorType.TEST_ID,
    "data-testid": LocatorType.TEST_ID,
    "aria-label": LocatorType.ARIA_LABEL,
    "arialabel": LocatorType.ARIA_LABEL,
}

_PREFIX_PATTERN = re.compile(r'^\s*([a-zA-Z-]+)\s*=\s*(.+)$', re.DOTALL)


def parse_locator(locator: str) -> Tuple[LocatorType, str]:
    """Split a locator string into its type and value.

    Accepted forms are ``"<type>=<value>"`` (``id=submit``,
    ``xpath=//button``, ``text=Sign in``, ``testid=login``), bare XPath
    (starting with ``//`` or ``(/``) and bare CSS for everything else.

    Examples:
        "#submit-btn"       -> (CSS, "#submit-btn")
        "//form/button[2]"  -> (XPATH, "//form/button[2]")
        "text=Log In"       -> (TEXT, "Log In")
    """
    locator = locator.strip()
    match = _PREFIX_PATTERN.match(locator)
    if match and match.group(1).lower() in _PREFIXES:
        value = match.group(2).strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        return _PREFIXES[match.group(1).lower()], value

    if locator.startswith("//") or locator.startswith("(/"):
        return LocatorType.XPATH, locator

    return LocatorType.CSS, locator


def format_locator(locator_type: LocatorType, value: str) -> str:
    """Render a locator string; CSS is rendered bare."""
    if locator_type == LocatorType.CSS:
        return value
    return f"{locator_type.value}={value}"


def option_to_locator(option: LocatorOption) -> str:
    return format_locator(option.type, option.value)


def same_locator(a: str, b: str) -> bool:
    """True when two locator strings address elements the same way."""
    return parse_locator(a) == parse_locator(b)


def is_locator_failure(error_message: Optional[str]) -> bool:
    """Classify whether a step error means the locator no longer matches.

    Only these failures are worth healing; assertion failures and
    navigation errors are not.
    """
    if not error_message:
        return False
    message = error_message.lower()
    return any(marker in message for marker in (
        "element not found",
        "no element matches",
        "unable to locate element",
        "no such element",
        "not visible",
        "matched multiple elements",
        "strict mode violation",
        "waiting for locator",
    ))


def create_healing_context(
    failed_locator: str,
    test_case_id: Identifier,
    step_index: int,
    page_snapshot: Optional[str] = None,
    error_message: Optional[str] = None,
    object_id: Optional[Identifier] = None,
    test_result_id: Optional[Identifier] = None,
    previous_successful_locator: Optional[str] = None,
    reference_snapshot: Optional[str] = None,
    reference_screenshot: Optional[bytes] = None,
    page_url: Optional[str] = None
) -> HealingContext:
    """Create a HealingContext for a failed step.

    Empty snapshots are normalized to ``None`` so strategies that
    require a DOM can self-exclude.
    """
    return HealingContext(
        failed_locator=failed_locator,
        test_case_id=test_case_id,
        step_index=step_index,
        object_id=object_id,
        page_snapshot=page_snapshot or None,
        error_message=error_message,
        previous_successful_locator=previous_successful_locator,
        test_result_id=test_result_id,
        reference_snapshot=reference_snapshot or None,
        reference_screenshot=reference_screenshot or None,
        page_url=page_url
    )
