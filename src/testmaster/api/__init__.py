"""
API module for TestMaster.

This module contains:
- autonomous_endpoints.py: Session start, status, progress streaming, results and cancellation
- healing_endpoints.py: Healing statistics, event history, approvals and configuration
"""

__all__ = ["autonomous_endpoints", "healing_endpoints"]
