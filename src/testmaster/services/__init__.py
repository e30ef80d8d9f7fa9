"""
Services module for self-healing locators and autonomous testing sessions.
"""

from .autonomous_orchestrator import AutonomousTestingOrchestrator, PhaseError
from .healing_coordinator import HealingCoordinator, create_healing_coordinator
from .healing_event_store import HealingEventStore, get_healing_event_store
from .multi_panel_orchestrator import MultiPanelOrchestrator
from .session_registry import SessionRegistry, get_session_registry

__all__ = [
    "AutonomousTestingOrchestrator",
    "PhaseError",
    "HealingCoordinator",
    "create_healing_coordinator",
    "HealingEventStore",
    "get_healing_event_store",
    "MultiPanelOrchestrator",
    "SessionRegistry",
    "get_session_registry",
]
