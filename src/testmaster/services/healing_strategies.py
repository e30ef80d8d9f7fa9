"""
Locator healing strategies.

Each strategy proposes at most one replacement for a failed locator and
reports nothing (``None``) when it has no candidate. Strategies never
manage the browser; they only resolve locators and take screenshots
through the driver they are handed.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..core.healing_utils import option_to_locator, parse_locator, same_locator
from ..core.models import (
    HealingConfig,
    HealingContext,
    HealingEventData,
    HealingResult,
    HealingStrategyName,
    LocatorOption,
    LocatorType,
)
from .ai_client import AIClient, AIClientError
from .browser import BrowserDriver
from .dom_analyzer import DOMAnalyzer
from .healing_event_store import HealingEventStore
from .image_similarity import crop_region, load_image, perceptual_similarity
from .locator_catalog import LocatorCatalog
from .similarity_scorer import SimilarityScorer

logger = logging.getLogger("testmaster.strategies")


class HealingStrategy(ABC):
    """Common interface for the healing heuristics."""

    name: HealingStrategyName

    @abstractmethod
    async def attempt_heal(self, context: HealingContext, config: HealingConfig,
                           browser: Optional[BrowserDriver] = None) -> Optional[HealingResult]:
        """Propose a replacement locator, or return None when there is none."""

    async def _resolves(self, browser: Optional[BrowserDriver], locator: str,
                        timeout_ms: Optional[int] = None) -> bool:
        """True when the locator addresses exactly one visible element (or no browser to ask)."""
        if browser is None:
            return True
        locator_type, value = parse_locator(locator)
        return await browser.find_element(locator_type, value, timeout_ms) is not None


def generate_alternative_locators(failed_locator: str) -> List[LocatorOption]:
    """
    Derive alternate locators from the failed locator string alone.

    Used by FALLBACK when the catalog knows nothing about the object.
    """
    locator_type, value = parse_locator(failed_locator)
    candidates = []

    identifier = None
    if locator_type == LocatorType.ID:
        identifier = value
    elif locator_type == LocatorType.CSS and re.fullmatch(r'#[\w-]+', value):
        identifier = value[1:]
    elif locator_type == LocatorType.XPATH:
        match = re.search(r'''@id=["']([^"']+)["']''', value)
        if match:
            identifier = match.group(1)
            candidates.append((LocatorType.CSS, f'#{identifier}'))
        match = re.search(r'''contains\(@class,\s*["']([^"']+)["']\)|@class=["']([^"' ]+)["']''', value)
        if match:
            candidates.append((LocatorType.CSS, f'.{match.group(1) or match.group(2)}'))

    if identifier:
        candidates.extend([
            (LocatorType.CSS, f'[id="{identifier}"]'),
            (LocatorType.CSS, f'[name="{identifier}"]'),
            (LocatorType.CSS, f'.{identifier}'),
            (LocatorType.TEST_ID, identifier),
            (LocatorType.CSS, f'[data-test="{identifier}"]'),
            (LocatorType.CSS, f'[id*="{identifier}"]'),
        ])
    elif locator_type == LocatorType.CSS:
        class_match = re.fullmatch(r'\.([\w-]+)', value)
        test_id_match = re.fullmatch(r'''\[data-test(?:id)?=["']?([^"'\]]+)["']?\]''', value)
        name_match = re.fullmatch(r'''\[name=["']?([^"'\]]+)["']?\]''', value)
        if class_match:
            candidates.append((LocatorType.CSS, f'[class*="{class_match.group(1)}"]'))
        elif test_id_match:
            candidates.extend([
                (LocatorType.TEST_ID, test_id_match.group(1)),
                (LocatorType.CSS, f'[data-test="{test_id_match.group(1)}"]'),
            ])
        elif name_match:
            candidates.extend([
                (LocatorType.ID, name_match.group(1)),
                (LocatorType.CSS, f'[id*="{name_match.group(1)}"]'),
            ])
    elif locator_type == LocatorType.TEST_ID:
        candidates.extend([
            (LocatorType.CSS, f'[data-test="{value}"]'),
            (LocatorType.ID, value),
        ])
    elif locator_type == LocatorType.TEXT:
        candidates.extend([
            (LocatorType.XPATH, f"//*[normalize-space()='{value}']"),
            (LocatorType.XPATH, f"//*[contains(text(), '{value}')]"),
        ])

    return [
        LocatorOption(type=candidate_type, value=candidate_value, priority=index + 1)
        for index, (candidate_type, candidate_value) in enumerate(candidates)
    ]


class FallbackStrategy(HealingStrategy):
    """Try the object's known alternate locators in priority order."""

    name = HealingStrategyName.FALLBACK

    def __init__(self, catalog: Optional[LocatorCatalog] = None):
        self.catalog = catalog if catalog is not None else LocatorCatalog()

    async def attempt_heal(self, context: HealingContext, config: HealingConfig,
                           browser: Optional[BrowserDriver] = None) -> Optional[HealingResult]:
        if browser is None:
            logger.debug("FALLBACK skipped: no browser to verify alternates")
            return None

        settings = config.strategy_config.fallback
        source = "catalog"
        options = self.catalog.get(context.object_id) if context.object_id is not None else []
        if not options:
            source = "generated"
            options = generate_alternative_locators(context.failed_locator)

        options = [
            o for o in options
            if not same_locator(option_to_locator(o), context.failed_locator)
        ]
        options.sort(key=lambda o: (o.priority, -(o.success_rate or 0.0)))
        alternatives = [option_to_locator(o) for o in options]

        attempted = []
        for option in options[:settings.max_locators_to_try]:
            locator = option_to_locator(option)
            attempted.append(locator)
            element = await browser.find_element(option.type, option.value, settings.visibility_timeout_ms)
            if element is None:
                continue

            confidence = option.success_rate if option.success_rate is not None else settings.default_confidence
            return HealingResult(
                strategy=self.name,
                new_locator=locator,
                confidence=confidence,
                metadata={
                    "reason": f"Alternate locator {locator} ({source}) resolves to one visible element",
                    "attempted_locators": attempted,
                    "alternative_locators": alternatives,
                    "source": source,
                },
            )

        logger.debug(f"FALLBACK found no resolving alternate among {len(attempted)} tried")
        return None


class SimilarityStrategy(HealingStrategy):
    """Find the current element most similar to the failed one's signature."""

    name = HealingStrategyName.SIMILARITY

    def __init__(self, analyzer: Optional[DOMAnalyzer] = None, scorer: Optional[SimilarityScorer] = None):
        self.analyzer = analyzer or DOMAnalyzer()
        self.scorer = scorer or SimilarityScorer()

    async def attempt_heal(self, context: HealingContext, config: HealingConfig,
                           browser: Optional[BrowserDriver] = None) -> Optional[HealingResult]:
        if not context.page_snapshot:
            logger.debug("SIMILARITY skipped: no page snapshot")
            return None

        settings = config.strategy_config.similarity
        target = None
        if context.reference_snapshot:
            for locator in filter(None, (context.failed_locator, context.previous_successful_locator)):
                target = self.analyzer.extract_target_properties(context.reference_snapshot, locator)
                if target is not None:
                    break
        sparse = target is None
        if sparse:
            target = self.analyzer.properties_from_locator(context.failed_locator)

        soup = self.analyzer.parse(context.page_snapshot)
        elements = self.analyzer.candidate_elements(soup, settings.max_candidates)
        scored = [
            (element, self.scorer.calculate_similarity(target, self.analyzer.extract_properties(element), sparse))
            for element in elements
        ]
        scored.sort(key=lambda item: item[1], reverse=True)

        for element, score in scored:
            if score < settings.min_similarity_score:
                break
            options = self.analyzer.generate_locator_options(element, soup)
            locators = [option_to_locator(o) for o in options]
            locators = [loc for loc in locators if not same_locator(loc, context.failed_locator)]
            if not locators:
                continue
            if not await self._resolves(browser, locators[0]):
                continue

            return HealingResult(
                strategy=self.name,
                new_locator=locators[0],
                confidence=score,
                metadata={
                    "reason": f"Element similar to the original (score {score:.3f})",
                    "similarity_score": score,
                    "matched_element": self.analyzer.describe(element),
                    "alternative_locators": locators[1:],
                    "sparse_signature": sparse,
                    "candidates_evaluated": len(scored),
                },
            )

        logger.debug(f"SIMILARITY found no element above {settings.min_similarity_score} among {len(scored)}")
        return None


VISUAL_PROMPT = """You are locating a UI element on a web page.
The first image is a crop of the element as it looked before the page changed.
The second image is a screenshot of the current page.
Return up to {max_regions} candidate elements on the current page that look like the
reference element, as JSON:
{{"candidates": [{{"locator": "<css selector or type=value locator>",
"bbox": {{"x": 0, "y": 0, "width": 0, "height": 0}}}}]}}
The element was previously located with: {failed_locator}
"""


class VisualStrategy(HealingStrategy):
    """Match the pre-failure element crop against AI-proposed page regions."""

    name = HealingStrategyName.VISUAL

    def __init__(self, ai_client: Optional[AIClient] = None):
        self.ai_client = ai_client

    async def attempt_heal(self, context: HealingContext, config: HealingConfig,
                           browser: Optional[BrowserDriver] = None) -> Optional[HealingResult]:
        if not context.reference_screenshot or browser is None:
            logger.debug("VISUAL skipped: needs a reference screenshot and a browser")
            return None
        if self.ai_client is None or not self.ai_client.enabled:
            logger.debug("VISUAL skipped: AI inference unavailable")
            return None

        settings = config.strategy_config.visual
        screenshot = await browser.screenshot()
        reference = load_image(context.reference_screenshot)
        page = load_image(screenshot)

        try:
            response = await self.ai_client.complete(
                VISUAL_PROMPT.format(max_regions=settings.max_regions, failed_locator=context.failed_locator),
                images=[context.reference_screenshot, screenshot],
            )
        except AIClientError as e:
            logger.debug(f"VISUAL miss: {e}")
            return None

        scored = []
        for candidate in (response.get("candidates") or [])[:settings.max_regions]:
            if not isinstance(candidate, dict):
                continue
            locator, bbox = candidate.get("locator"), candidate.get("bbox")
            if not locator or bbox is None:
                continue
            try:
                region = crop_region(page, bbox)
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Ignoring candidate {locator} with bad bbox: {e}")
                continue
            scored.append((perceptual_similarity(reference, region), locator, bbox))

        scored.sort(key=lambda item: item[0], reverse=True)
        for score, locator, bbox in scored:
            if score < settings.match_threshold:
                break
            if same_locator(locator, context.failed_locator):
                continue
            if not await self._resolves(browser, locator):
                continue
            return HealingResult(
                strategy=self.name,
                new_locator=locator,
                confidence=score,
                metadata={
                    "reason": f"Visually matches the reference element (score {score:.3f})",
                    "visual_score": score,
                    "bbox": bbox,
                    "regions_compared": len(scored),
                },
            )

        logger.debug(f"VISUAL found no region above {settings.match_threshold}")
        return None


class HistoricalStrategy(HealingStrategy):
    """Reuse replacements that healed the same locator before."""

    name = HealingStrategyName.HISTORICAL

    def __init__(self, event_store: HealingEventStore):
        self.event_store = event_store

    async def attempt_heal(self, context: HealingContext, config: HealingConfig,
                           browser: Optional[BrowserDriver] = None) -> Optional[HealingResult]:
        settings = config.strategy_config.historical
        events = await self.event_store.find_history(
            context.failed_locator, context.object_id, settings.lookback_days
        )
        if not events:
            logger.debug("HISTORICAL miss: no history for this locator")
            return None

        successes: Dict[str, List[HealingEventData]] = {}
        for event in events:
            if event.successful and event.healed_locator and not same_locator(
                    event.healed_locator, context.failed_locator):
                successes.setdefault(event.healed_locator, []).append(event)

        qualified = [
            (locator, hits) for locator, hits in successes.items()
            if len(hits) >= settings.min_success_count
        ]
        qualified.sort(key=lambda item: max(e.created_at for e in item[1]), reverse=True)

        for locator, hits in qualified:
            if not await self._resolves(browser, locator):
                continue
            return HealingResult(
                strategy=self.name,
                new_locator=locator,
                confidence=len(hits) / len(events),
                metadata={
                    "reason": f"Healed this locator {len(hits)} times in the last {settings.lookback_days} days",
                    "success_count": len(hits),
                    "total_attempts": len(events),
                    "last_success": max(e.created_at for e in hits).isoformat(),
                },
            )

        logger.debug(f"HISTORICAL miss: no replacement with {settings.min_success_count}+ successes")
        return None


def build_default_strategies(event_store: HealingEventStore,
                             catalog: Optional[LocatorCatalog] = None,
                             ai_client: Optional[AIClient] = None) -> List[HealingStrategy]:
    """The four strategies in tie-break order."""
    return [
        FallbackStrategy(catalog),
        SimilarityStrategy(),
        VisualStrategy(ai_client),
        HistoricalStrategy(event_store),
    ]
