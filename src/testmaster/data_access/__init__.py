"""Data access layer for the healing event store."""

from .queries import (
    CREATE_HEALING_EVENTS_TABLE,
    CREATE_HEALING_EVENTS_INDEXES,
    INSERT_HEALING_EVENT,
    UPDATE_HEALING_APPROVAL,
)
from .repository import HealingEventRepository

__all__ = [
    "CREATE_HEALING_EVENTS_TABLE",
    "CREATE_HEALING_EVENTS_INDEXES",
    "INSERT_HEALING_EVENT",
    "UPDATE_HEALING_APPROVAL",
    "HealingEventRepository",
]
