"""
Tests for healing configuration loading and validation, and for the
session configuration models.
"""

from dataclasses import replace

import pytest
import yaml

from src.testmaster.core.config_loader import ConfigurationError, HealingConfigLoader
from src.testmaster.core.healing_utils import format_locator, is_locator_failure, parse_locator
from src.testmaster.core.models import (
    AutonomousTestingConfig,
    HealingConfig,
    HealingStrategyName,
    LocatorType,
    SessionState,
    SuggestionThreshold,
    TestingDepth,
)


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config" / "self_healing.yaml"


def write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


class TestHealingConfigLoader:

    def test_missing_file_gives_defaults(self, config_path):
        config = HealingConfigLoader(str(config_path)).load_config()

        assert config == HealingConfig()
        assert config.enabled is True
        assert config.auto_apply_threshold == 0.9
        assert config.suggestion_threshold == SuggestionThreshold(0.7, 0.9)
        assert config.max_healing_time == 10000
        assert config.strategy_config.fallback.default_confidence == 0.75

    def test_partial_file_is_merged_over_defaults(self, config_path):
        write_yaml(config_path, {"self_healing": {
            "enabled_strategies": ["SIMILARITY", "FALLBACK"],
            "strategy_config": {"historical": {"lookback_days": 7}},
        }})

        config = HealingConfigLoader(str(config_path)).load_config()

        assert config.enabled_strategies == (HealingStrategyName.SIMILARITY, HealingStrategyName.FALLBACK)
        assert config.strategy_config.historical.lookback_days == 7
        assert config.strategy_config.historical.min_success_count == 2

    def test_unknown_strategy_is_rejected(self, config_path):
        write_yaml(config_path, {"self_healing": {"enabled_strategies": ["FALLBACK", "MAGIC"]}})

        with pytest.raises(ConfigurationError, match="Invalid healing strategy"):
            HealingConfigLoader(str(config_path)).load_config()

    def test_unknown_key_is_rejected(self, config_path):
        write_yaml(config_path, {"self_healing": {"strategy_config": {"fallback": {"retries": 3}}}})

        with pytest.raises(ConfigurationError, match="Unknown configuration key"):
            HealingConfigLoader(str(config_path)).load_config()

    def test_malformed_yaml(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text("self_healing: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            HealingConfigLoader(str(config_path)).load_config()

    @pytest.mark.parametrize("section, message", [
        ({"auto_apply_threshold": 0.6, "suggestion_threshold": {"min": 0.7, "max": 0.6}},
         "lower than auto_apply_threshold"),
        ({"suggestion_threshold": {"min": 0.7, "max": 0.8}}, "must equal auto_apply_threshold"),
        ({"max_healing_time": 0}, "max_healing_time must be positive"),
        ({"enabled_strategies": ["FALLBACK", "FALLBACK"]}, "Duplicate healing strategies"),
    ])
    def test_invalid_bands_are_rejected(self, config_path, section, message):
        write_yaml(config_path, {"self_healing": section})

        with pytest.raises(ConfigurationError, match=message):
            HealingConfigLoader(str(config_path)).load_config()

    def test_save_then_load(self, config_path):
        loader = HealingConfigLoader(str(config_path))
        config = replace(
            HealingConfig(),
            auto_apply_threshold=0.85,
            suggestion_threshold=SuggestionThreshold(0.6, 0.85),
        )

        loader.save_config(config)

        assert HealingConfigLoader(str(config_path)).load_config() == config

    def test_save_validates_first(self, config_path):
        loader = HealingConfigLoader(str(config_path))

        with pytest.raises(ConfigurationError):
            loader.save_config(replace(HealingConfig(), auto_apply_threshold=0.5))
        assert not config_path.exists()

    def test_cached_until_file_changes(self, config_path):
        write_yaml(config_path, {"self_healing": {"max_healing_time": 5000}})
        loader = HealingConfigLoader(str(config_path))

        first = loader.load_config()
        assert loader.load_config() is first

        write_yaml(config_path, {"self_healing": {"max_healing_time": 8000}})
        assert loader.load_config(force_reload=True).max_healing_time == 8000


class TestLocatorParsing:

    @pytest.mark.parametrize("locator, expected", [
        ("#submit-btn", (LocatorType.CSS, "#submit-btn")),
        ("//form/button[2]", (LocatorType.XPATH, "//form/button[2]")),
        ("(./button)", (LocatorType.CSS, "(./button)")),
        ("(//button)[1]", (LocatorType.XPATH, "(//button)[1]")),
        ("id=login", (LocatorType.ID, "login")),
        ("text=Log In", (LocatorType.TEXT, "Log In")),
        ("data-testid=cart", (LocatorType.TEST_ID, "cart")),
        ("aria-label='Close dialog'", (LocatorType.ARIA_LABEL, "Close dialog")),
        ("input[name=q]", (LocatorType.CSS, "input[name=q]")),
    ])
    def test_parse_locator(self, locator, expected):
        assert parse_locator(locator) == expected

    def test_css_is_formatted_bare(self):
        assert format_locator(LocatorType.CSS, ".btn") == ".btn"
        assert format_locator(LocatorType.ID, "login") == "id=login"

    def test_locator_failure_detection(self):
        assert is_locator_failure("Element not found: #submit")
        assert not is_locator_failure("Expected status 200, got 500")


class TestSessionConfig:

    def test_needs_a_target(self):
        with pytest.raises(ValueError, match="website_url or api_url"):
            AutonomousTestingConfig()

    def test_workers_must_be_positive(self):
        with pytest.raises(ValueError, match="parallel_workers"):
            AutonomousTestingConfig(website_url="http://shop.test", parallel_workers=0)

    def test_max_pages_narrows_the_tier(self):
        config = AutonomousTestingConfig(website_url="http://shop.test", depth=TestingDepth.DEEP, max_pages=5)

        assert config.limits.max_pages == 5
        assert config.limits.max_link_depth == 4

    def test_max_pages_never_widens_the_tier(self):
        config = AutonomousTestingConfig(website_url="http://shop.test", max_pages=500)

        assert config.limits.max_pages == 10

    def test_credentials_are_not_serialized(self):
        from src.testmaster.core.models import AuthenticationConfig, Credentials
        config = AutonomousTestingConfig(
            website_url="http://shop.test",
            authentication=AuthenticationConfig("http://shop.test/login", Credentials("alice", "s3cret!")),
        )

        data = config.to_dict()

        assert data["authentication"] == {"login_url": "http://shop.test/login", "username": "alice"}
        assert "s3cret!" not in str(data)

    def test_terminal_states(self):
        assert {s for s in SessionState if s.is_terminal} == {
            SessionState.COMPLETED, SessionState.ERROR, SessionState.CANCELLED,
        }
