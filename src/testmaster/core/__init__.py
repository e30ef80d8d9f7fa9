"""
Core module for TestMaster.

This module contains:
- config.py: Application settings
- config_loader.py: Healing configuration loading and validation
- logging_config.py: Structured logging configuration
- healing_utils.py: Locator parsing and healing context helpers
"""

__all__ = ["config", "config_loader", "logging_config", "healing_utils"]
