"""
Healing Event Store.

Append-only persistence of healing attempts plus the aggregate statistics
used by dashboards and by the HISTORICAL strategy. All sqlite work runs in
a worker thread so the event loop is never blocked.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..core.config import settings
from ..core.models import (
    HealingEventData,
    HealingEventFilter,
    HealingStatistics,
    Identifier,
)
from ..data_access import HealingEventRepository

logger = logging.getLogger(__name__)


class HealingEventStore:
    """Async facade over the healing event repository."""

    def __init__(self, repository: HealingEventRepository):
        self.repository = repository
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        async with self._init_lock:
            if not self._initialized:
                await asyncio.to_thread(self.repository.initialize_schema)
                self._initialized = True

    async def save(self, event: HealingEventData) -> int:
        """Persist an event and return its identifier.

        The event object is updated in place with the assigned id.
        """
        await self.initialize()
        event_id = await asyncio.to_thread(self.repository.insert_event, event)
        event.id = event_id
        logger.debug(f"Stored healing event {event_id} for test case {event.test_case_id}")
        return event_id

    async def get(self, event_id: int) -> Optional[HealingEventData]:
        await self.initialize()
        return await asyncio.to_thread(self.repository.get_event, event_id)

    async def query(self, filters: Optional[HealingEventFilter] = None) -> List[HealingEventData]:
        await self.initialize()
        return await asyncio.to_thread(self.repository.query_events, filters or HealingEventFilter())

    async def approve(self, event_id: int, approved: bool,
                      approved_by: Optional[str] = None) -> Optional[HealingEventData]:
        """Record a review decision on a pending suggestion.

        Returns:
            The updated event, or None when the event does not exist or
            is not awaiting review
        """
        await self.initialize()
        updated = await asyncio.to_thread(
            self.repository.update_approval, event_id, approved, approved_by, datetime.now()
        )
        if not updated:
            return None
        logger.info(f"Healing event {event_id} {'approved' if approved else 'rejected'} by {approved_by}")
        return await self.get(event_id)

    async def find_history(self, failed_locator: str, object_id: Optional[Identifier],
                           lookback_days: int) -> List[HealingEventData]:
        """All attempts for a (object, failed locator) pair inside the lookback window.

        Attempts without an object id only count towards other attempts
        without one.
        """
        await self.initialize()
        return await asyncio.to_thread(
            self.repository.find_history, failed_locator, object_id,
            datetime.now() - timedelta(days=lookback_days),
        )

    async def get_healing_statistics(self, days: int = 30) -> HealingStatistics:
        """Aggregate attempts and success rates over a rolling window."""
        await self.initialize()
        since = datetime.now() - timedelta(days=days)

        def _collect() -> HealingStatistics:
            total, successes, pending = self.repository.get_totals(since)
            return HealingStatistics(
                days=days,
                total_attempts=total,
                successful_heals=successes,
                pending_approvals=pending,
                by_strategy=self.repository.get_strategy_stats(since),
                most_healed_objects=self.repository.get_most_healed_objects(since),
                recent_heals=self.repository.get_recent_events(since),
            )

        return await asyncio.to_thread(_collect)


_event_store: Optional[HealingEventStore] = None


def get_healing_event_store() -> HealingEventStore:
    """Get or create the process-wide event store."""
    global _event_store

    if _event_store is None:
        _event_store = HealingEventStore(HealingEventRepository(settings.HEALING_DB_PATH))
    return _event_store
