"""
Unit tests for the four locator healing strategies.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from src.testmaster.core.models import (
    HealingContext,
    HealingEventData,
    HealingStrategyName,
    LocatorOption,
    LocatorType,
)
from src.testmaster.services.ai_client import AIClientError
from src.testmaster.services.healing_strategies import (
    FallbackStrategy,
    HistoricalStrategy,
    SimilarityStrategy,
    VisualStrategy,
    build_default_strategies,
    generate_alternative_locators,
)
from tests.utils.fake_browser import FakeBrowserDriver, FakePage, png_bytes

PAGE_URL = "http://shop.test/checkout"

REFERENCE_HTML = """
<html><body><form id="checkout">
  <input type="text" name="card" id="card" placeholder="Card number">
  <button type="submit" id="submit-button" name="pay" class="btn primary" aria-label="Pay">Pay now</button>
</form></body></html>
"""

CURRENT_HTML = """
<html><body><form id="checkout">
  <input type="text" name="card" id="card" placeholder="Card number">
  <button type="submit" id="submit-btn" name="pay" class="btn primary" aria-label="Pay">Pay now</button>
</form></body></html>
"""


def make_context(**overrides):
    values = dict(failed_locator="#submit-button", test_case_id="checkout-001", object_id="pay-button")
    values.update(overrides)
    return HealingContext(**values)


class TestAlternativeLocatorGeneration:

    def test_id_locator_expands_to_attribute_variants(self):
        options = generate_alternative_locators("id=submit")
        values = [(o.type, o.value) for o in options]

        assert (LocatorType.CSS, '[id="submit"]') in values
        assert (LocatorType.CSS, '[name="submit"]') in values
        assert (LocatorType.TEST_ID, "submit") in values
        assert [o.priority for o in options] == list(range(1, len(options) + 1))

    def test_xpath_with_id_yields_css_id(self):
        options = generate_alternative_locators("//button[@id='pay']")

        assert options[0].type == LocatorType.CSS
        assert options[0].value == "#pay"

    def test_text_locator_yields_xpath(self):
        options = generate_alternative_locators("text=Sign in")

        assert all(o.type == LocatorType.XPATH for o in options)
        assert "Sign in" in options[0].value

    def test_unrecognized_css_yields_nothing(self):
        assert generate_alternative_locators("div > span:nth-child(2)") == []


class TestFallbackStrategy:

    @pytest.mark.asyncio
    async def test_uses_catalog_success_rate_as_confidence(self, catalog, healing_config):
        driver = FakeBrowserDriver({PAGE_URL: FakePage(CURRENT_HTML)})
        await driver.navigate(PAGE_URL)
        catalog.register("pay-button", [
            LocatorOption(LocatorType.CSS, "#gone", priority=1, success_rate=0.99),
            LocatorOption(LocatorType.CSS, "#submit-btn", priority=2, success_rate=0.95),
        ])

        result = await FallbackStrategy(catalog).attempt_heal(make_context(), healing_config, driver)

        assert result.strategy == HealingStrategyName.FALLBACK
        assert result.new_locator == "#submit-btn"
        assert result.confidence == 0.95
        assert result.metadata["attempted_locators"] == ["#gone", "#submit-btn"]
        assert result.metadata["source"] == "catalog"

    @pytest.mark.asyncio
    async def test_generated_alternates_use_default_confidence(self, healing_config):
        driver = FakeBrowserDriver({PAGE_URL: FakePage(CURRENT_HTML)})
        await driver.navigate(PAGE_URL)

        result = await FallbackStrategy().attempt_heal(
            make_context(failed_locator="id=pay"), healing_config, driver
        )

        assert result.new_locator == '[name="pay"]'
        assert result.confidence == healing_config.strategy_config.fallback.default_confidence
        assert result.metadata["source"] == "generated"

    @pytest.mark.asyncio
    async def test_failed_locator_itself_is_never_proposed(self, catalog, healing_config):
        driver = FakeBrowserDriver({PAGE_URL: FakePage(REFERENCE_HTML)})
        await driver.navigate(PAGE_URL)
        catalog.register("pay-button", [LocatorOption(LocatorType.ID, "submit-button", priority=1)])

        result = await FallbackStrategy(catalog).attempt_heal(
            make_context(failed_locator="id=submit-button"), healing_config, driver
        )

        assert result is None or result.new_locator != "id=submit-button"

    @pytest.mark.asyncio
    async def test_needs_a_browser(self, catalog, healing_config):
        catalog.register("pay-button", [LocatorOption(LocatorType.CSS, "#submit-btn")])

        assert await FallbackStrategy(catalog).attempt_heal(make_context(), healing_config) is None


class TestSimilarityStrategy:

    @pytest.mark.asyncio
    async def test_matches_renamed_element_against_reference(self, healing_config):
        context = make_context(page_snapshot=CURRENT_HTML, reference_snapshot=REFERENCE_HTML)

        result = await SimilarityStrategy().attempt_heal(context, healing_config)

        assert result.strategy == HealingStrategyName.SIMILARITY
        assert result.new_locator == "id=submit-btn"
        assert result.confidence >= healing_config.strategy_config.similarity.min_similarity_score
        assert result.metadata["sparse_signature"] is False
        assert result.metadata["matched_element"]["tag"] == "button"

    @pytest.mark.asyncio
    async def test_sparse_signature_from_locator_alone(self, healing_config):
        context = make_context(failed_locator="#submit-btn2", page_snapshot=CURRENT_HTML)

        result = await SimilarityStrategy().attempt_heal(context, healing_config)

        assert result.new_locator == "id=submit-btn"
        assert result.metadata["sparse_signature"] is True

    @pytest.mark.asyncio
    async def test_candidate_must_resolve_in_browser(self, healing_config):
        driver = FakeBrowserDriver({PAGE_URL: FakePage("<html><body></body></html>")})
        await driver.navigate(PAGE_URL)
        context = make_context(page_snapshot=CURRENT_HTML, reference_snapshot=REFERENCE_HTML)

        assert await SimilarityStrategy().attempt_heal(context, healing_config, driver) is None

    @pytest.mark.asyncio
    async def test_needs_a_page_snapshot(self, healing_config):
        assert await SimilarityStrategy().attempt_heal(make_context(), healing_config) is None


class TestVisualStrategy:

    @pytest.fixture
    def ai_client(self):
        client = Mock()
        client.enabled = True
        client.complete = AsyncMock(return_value={
            "candidates": [
                {"locator": "#submit-btn", "bbox": {"x": 10, "y": 10, "width": 40, "height": 20}},
            ]
        })
        return client

    @pytest.mark.asyncio
    async def test_matching_region_is_proposed(self, ai_client, healing_config):
        driver = FakeBrowserDriver({PAGE_URL: FakePage(CURRENT_HTML)})
        await driver.navigate(PAGE_URL)
        context = make_context(reference_screenshot=png_bytes())

        result = await VisualStrategy(ai_client).attempt_heal(context, healing_config, driver)

        assert result.strategy == HealingStrategyName.VISUAL
        assert result.new_locator == "#submit-btn"
        assert result.confidence >= healing_config.strategy_config.visual.match_threshold
        prompt = ai_client.complete.await_args.args[0]
        assert "#submit-button" in prompt

    @pytest.mark.asyncio
    async def test_skipped_without_enabled_ai(self, ai_client, healing_config):
        ai_client.enabled = False
        driver = FakeBrowserDriver({PAGE_URL: FakePage(CURRENT_HTML)})
        await driver.navigate(PAGE_URL)
        context = make_context(reference_screenshot=png_bytes())

        assert await VisualStrategy(ai_client).attempt_heal(context, healing_config, driver) is None
        ai_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_ai_error_is_a_miss(self, ai_client, healing_config):
        ai_client.complete.side_effect = AIClientError("quota exceeded")
        driver = FakeBrowserDriver({PAGE_URL: FakePage(CURRENT_HTML)})
        await driver.navigate(PAGE_URL)
        context = make_context(reference_screenshot=png_bytes())

        assert await VisualStrategy(ai_client).attempt_heal(context, healing_config, driver) is None

    @pytest.mark.asyncio
    async def test_needs_reference_screenshot(self, ai_client, healing_config):
        driver = FakeBrowserDriver({PAGE_URL: FakePage(CURRENT_HTML)})

        assert await VisualStrategy(ai_client).attempt_heal(make_context(), healing_config, driver) is None


class TestHistoricalStrategy:

    async def _record(self, store, healed, auto_applied=True, approved=None):
        await store.save(HealingEventData(
            test_case_id="checkout-001",
            object_id="pay-button",
            step_index=2,
            failed_locator="#submit-button",
            healed_locator=healed,
            strategy=HealingStrategyName.FALLBACK,
            confidence=0.95,
            auto_applied=auto_applied,
            approved=approved,
        ))

    @pytest.mark.asyncio
    async def test_repeated_successful_heal_is_reused(self, event_store, healing_config):
        await self._record(event_store, "#submit-btn")
        await self._record(event_store, "#submit-btn", auto_applied=False, approved=True)
        await self._record(event_store, "", auto_applied=False, approved=False)

        result = await HistoricalStrategy(event_store).attempt_heal(make_context(), healing_config)

        assert result.strategy == HealingStrategyName.HISTORICAL
        assert result.new_locator == "#submit-btn"
        assert result.confidence == pytest.approx(2 / 3)
        assert result.metadata["success_count"] == 2

    @pytest.mark.asyncio
    async def test_single_success_is_not_enough(self, event_store, healing_config):
        await self._record(event_store, "#submit-btn")

        assert await HistoricalStrategy(event_store).attempt_heal(make_context(), healing_config) is None

    @pytest.mark.asyncio
    async def test_pending_suggestions_do_not_count(self, event_store, healing_config):
        await self._record(event_store, "#submit-btn", auto_applied=False)
        await self._record(event_store, "#submit-btn", auto_applied=False)

        assert await HistoricalStrategy(event_store).attempt_heal(make_context(), healing_config) is None


class TestDefaultStrategies:

    def test_built_in_tie_break_order(self, event_store):
        names = [s.name for s in build_default_strategies(event_store)]

        assert names == [
            HealingStrategyName.FALLBACK,
            HealingStrategyName.SIMILARITY,
            HealingStrategyName.VISUAL,
            HealingStrategyName.HISTORICAL,
        ]
