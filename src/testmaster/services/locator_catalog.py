"""In-memory catalog of known alternate locators per object."""

import logging
from typing import Dict, Iterable, List

from ..core.healing_utils import option_to_locator
from ..core.models import ElementInfo, Identifier, LocatorOption

logger = logging.getLogger(__name__)


class LocatorCatalog:
    """
    Maps object ids to the alternate LocatorOptions recorded for them.

    Filled from crawl data before execution and read by the FALLBACK
    strategy. Each testing session owns its own catalog.
    """

    def __init__(self):
        self._options: Dict[Identifier, List[LocatorOption]] = {}

    def register(self, object_id: Identifier, options: Iterable[LocatorOption]) -> None:
        """Add options for an object, skipping locators it already has."""
        known = self._options.setdefault(object_id, [])
        seen = {option_to_locator(o) for o in known}
        for option in options:
            locator = option_to_locator(option)
            if locator not in seen:
                known.append(option)
                seen.add(locator)

    def register_element(self, element: ElementInfo) -> None:
        if element.locators:
            self.register(element.object_id, element.locators)

    def get(self, object_id: Identifier) -> List[LocatorOption]:
        """Options for an object ordered by priority, then best success rate."""
        options = self._options.get(object_id, [])
        return sorted(options, key=lambda o: (o.priority, -(o.success_rate or 0.0)))

    def record_outcome(self, object_id: Identifier, locator: str, success: bool,
                       smoothing: float = 0.2) -> None:
        """Fold a locator's latest outcome into its success rate."""
        for option in self._options.get(object_id, []):
            if option_to_locator(option) == locator:
                previous = option.success_rate if option.success_rate is not None else (1.0 if success else 0.0)
                option.success_rate = round((1 - smoothing) * previous + smoothing * (1.0 if success else 0.0), 4)
                return

    def __contains__(self, object_id: Identifier) -> bool:
        return object_id in self._options

    def __len__(self) -> int:
        return len(self._options)
