"""Configuration loading and validation utilities for self-healing."""

import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List
import logging

from .models.healing_models import HealingConfig, HealingStrategyName
from .config import settings

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


class HealingConfigLoader:
    """Loads and validates self-healing configuration."""

    DEFAULT_CONFIG = {
        "self_healing": {
            "enabled": True,
            "auto_apply_threshold": 0.9,
            "suggestion_threshold": {
                "min": 0.7,
                "max": 0.9
            },
            "max_healing_time": 10000,
            "enabled_strategies": ["FALLBACK", "SIMILARITY", "VISUAL", "HISTORICAL"],
            "strategy_config": {
                "fallback": {
                    "max_locators_to_try": 5,
                    "default_confidence": 0.75,
                    "visibility_timeout_ms": 2000
                },
                "similarity": {
                    "min_similarity_score": 0.8,
                    "max_candidates": 500
                },
                "visual": {
                    "match_threshold": 0.85,
                    "max_regions": 5
                },
                "historical": {
                    "lookback_days": 30,
                    "min_success_count": 2
                }
            }
        }
    }

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config loader with optional custom path."""
        self.config_path = Path(config_path or settings.HEALING_CONFIG_PATH)
        self._config_cache: Optional[HealingConfig] = None
        self._config_file_mtime: Optional[float] = None

    def load_config(self, force_reload: bool = False) -> HealingConfig:
        """Load and validate self-healing configuration.

        Args:
            force_reload: Force reload even if cached config exists

        Returns:
            HealingConfig: Validated, immutable configuration object

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if not force_reload and self._config_cache and self._is_config_current():
            return self._config_cache

        try:
            config_data = self._load_config_file()
            healing_config = self._parse_healing_config(config_data)
            self.validate_config(healing_config)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Failed to load self-healing configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}") from e

        self._config_cache = healing_config
        self._config_file_mtime = (
            self.config_path.stat().st_mtime if self.config_path.exists() else None
        )
        logger.info(f"Loaded self-healing configuration from {self.config_path}")
        return healing_config

    def save_config(self, config: HealingConfig) -> None:
        """Save configuration to file.

        Raises:
            ConfigurationError: If validation or writing fails
        """
        self.validate_config(config)

        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                yaml.dump({"self_healing": config.to_dict()}, f,
                          default_flow_style=False, indent=2, sort_keys=False)
        except OSError as e:
            logger.error(f"Failed to save self-healing configuration: {e}")
            raise ConfigurationError(f"Configuration saving failed: {e}") from e

        self._config_cache = config
        self._config_file_mtime = self.config_path.stat().st_mtime
        logger.info(f"Saved self-healing configuration to {self.config_path}")

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration from file or return defaults."""
        if not self.config_path.exists():
            logger.info(f"Config file {self.config_path} not found, using defaults")
            return copy.deepcopy(self.DEFAULT_CONFIG)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read config file: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Config file must contain a mapping")

        return self._deep_merge(copy.deepcopy(self.DEFAULT_CONFIG), config_data)

    def _parse_healing_config(self, config_data: Dict[str, Any]) -> HealingConfig:
        """Parse configuration data into a HealingConfig object."""
        healing_section = config_data.get("self_healing", {})
        try:
            return HealingConfig.from_dict(healing_section)
        except ValueError as e:
            raise ConfigurationError(f"Invalid healing strategy: {e}") from e
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration key: {e}") from e

    @staticmethod
    def validate_config(config: HealingConfig) -> None:
        """Validate configuration values.

        The reject, suggest and auto-apply bands must be ordered and
        contiguous: ``0 <= min < auto_apply_threshold <= 1`` and the
        suggestion band ends exactly where auto-apply begins.

        Raises:
            ConfigurationError: If validation fails
        """
        errors: List[str] = []
        low = config.suggestion_threshold.min
        high = config.suggestion_threshold.max
        auto = config.auto_apply_threshold

        if not 0.0 <= low <= 1.0:
            errors.append("suggestion_threshold.min must be between 0.0 and 1.0")
        if not 0.0 <= auto <= 1.0:
            errors.append("auto_apply_threshold must be between 0.0 and 1.0")
        if low >= auto:
            errors.append("suggestion_threshold.min must be lower than auto_apply_threshold")
        if high != auto:
            errors.append("suggestion_threshold.max must equal auto_apply_threshold")

        if config.max_healing_time <= 0:
            errors.append("max_healing_time must be positive (milliseconds)")

        if len(config.enabled_strategies) != len(set(config.enabled_strategies)):
            errors.append("Duplicate healing strategies are not allowed")
        for strategy in config.enabled_strategies:
            if not isinstance(strategy, HealingStrategyName):
                errors.append(f"Unknown healing strategy: {strategy}")

        sc = config.strategy_config
        if sc.fallback.max_locators_to_try < 1 or sc.fallback.max_locators_to_try > 50:
            errors.append("fallback.max_locators_to_try must be between 1 and 50")
        if not 0.0 <= sc.fallback.default_confidence <= 1.0:
            errors.append("fallback.default_confidence must be between 0.0 and 1.0")
        if sc.fallback.visibility_timeout_ms <= 0:
            errors.append("fallback.visibility_timeout_ms must be positive")
        if not 0.0 <= sc.similarity.min_similarity_score <= 1.0:
            errors.append("similarity.min_similarity_score must be between 0.0 and 1.0")
        if sc.similarity.max_candidates < 1:
            errors.append("similarity.max_candidates must be at least 1")
        if not 0.0 <= sc.visual.match_threshold <= 1.0:
            errors.append("visual.match_threshold must be between 0.0 and 1.0")
        if sc.visual.max_regions < 1:
            errors.append("visual.max_regions must be at least 1")
        if sc.historical.lookback_days < 1 or sc.historical.lookback_days > 365:
            errors.append("historical.lookback_days must be between 1 and 365")
        if sc.historical.min_success_count < 1:
            errors.append("historical.min_success_count must be at least 1")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed: " + "; ".join(errors))

    def _is_config_current(self) -> bool:
        """Check if cached config is still current."""
        if not self.config_path.exists():
            return self._config_file_mtime is None

        return self._config_file_mtime == self.config_path.stat().st_mtime

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


# Global config loader instance
config_loader = HealingConfigLoader()


def get_healing_config(force_reload: bool = False) -> HealingConfig:
    """Get the current self-healing configuration."""
    return config_loader.load_config(force_reload)


def save_healing_config(config: HealingConfig) -> None:
    """Save self-healing configuration."""
    config_loader.save_config(config)
