"""Repository pattern for healing event persistence."""

import json
import sqlite3
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path

from ..core.models.healing_models import (
    HealingEventData,
    HealingEventFilter,
    HealingStrategyName,
    StrategyStatistics,
)
from .queries import (
    CREATE_HEALING_EVENTS_TABLE,
    CREATE_HEALING_EVENTS_INDEXES,
    INSERT_HEALING_EVENT,
    UPDATE_HEALING_APPROVAL,
    SELECT_HEALING_EVENT_COLUMNS,
    SELECT_HEALING_EVENT_BY_ID,
    SELECT_TOTALS_SINCE,
    SELECT_STRATEGY_STATS_SINCE,
    SELECT_MOST_HEALED_OBJECTS_SINCE,
    SELECT_RECENT_EVENTS_SINCE,
    SELECT_HISTORY_SINCE,
)

logger = logging.getLogger(__name__)


def _timestamp(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _optional_bool(value: Optional[int]) -> Optional[bool]:
    return None if value is None else bool(value)


class HealingEventRepository:
    """Repository for healing event database operations."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        """
        Initialize repository with database path.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path
        self.timeout = timeout
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self.timeout)

    def initialize_schema(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(CREATE_HEALING_EVENTS_TABLE)
            for statement in CREATE_HEALING_EVENTS_INDEXES:
                cursor.execute(statement)
            conn.commit()

        logger.info(f"Healing event schema initialized at {self.db_path}")

    def insert_event(self, event: HealingEventData) -> int:
        """
        Append a healing event.

        Returns:
            Row id of the stored event
        """
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(INSERT_HEALING_EVENT, (
                event.test_result_id,
                event.test_case_id,
                event.object_id,
                event.step_index,
                event.failed_locator,
                event.healed_locator,
                event.strategy.value if event.strategy else None,
                event.confidence,
                int(event.auto_applied),
                None if event.approved is None else int(event.approved),
                event.approved_by,
                _timestamp(event.approved_at) if event.approved_at else None,
                json.dumps(event.metadata, default=str),
                _timestamp(event.created_at),
            ))
            conn.commit()
            return cursor.lastrowid

    def get_event(self, event_id: int) -> Optional[HealingEventData]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_HEALING_EVENT_BY_ID, (event_id,))
            row = cursor.fetchone()
            return self._row_to_event(row) if row else None

    def query_events(self, filters: HealingEventFilter) -> List[HealingEventData]:
        """
        Query events matching every predicate set on the filter.

        Returns:
            Events ordered newest first
        """
        clauses, params = self._build_where(filters)
        sql = SELECT_HEALING_EVENT_COLUMNS
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, id DESC"
        if filters.limit:
            sql += " LIMIT ?"
            params.append(filters.limit)

        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(sql, params)
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def find_history(self, failed_locator: str, object_id: Any, since: datetime) -> List[HealingEventData]:
        """Events for one failed locator on one object; a None object only matches None."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_HISTORY_SINCE, (failed_locator, object_id, _timestamp(since)))
            return [self._row_to_event(row) for row in cursor.fetchall()]

    def update_approval(self, event_id: int, approved: bool,
                        approved_by: Optional[str], approved_at: datetime) -> bool:
        """
        Record a human review on a pending suggestion.

        Returns:
            True if a pending, non-auto-applied event was updated
        """
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(UPDATE_HEALING_APPROVAL, (
                int(approved), approved_by, _timestamp(approved_at), event_id
            ))
            conn.commit()
            return cursor.rowcount == 1

    def get_totals(self, since: datetime) -> Tuple[int, int, int]:
        """Return (attempts, successes, pending approvals) since a timestamp."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_TOTALS_SINCE, (_timestamp(since),))
            total, successes, pending = cursor.fetchone()
            return total, successes, pending

    def get_strategy_stats(self, since: datetime) -> Dict[str, StrategyStatistics]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_STRATEGY_STATS_SINCE, (_timestamp(since),))

            stats = {}
            for strategy, attempts, successes, avg_confidence, avg_time in cursor.fetchall():
                stats[strategy] = StrategyStatistics(
                    attempts=attempts,
                    successes=successes or 0,
                    avg_confidence=avg_confidence or 0.0,
                    avg_execution_time_ms=avg_time or 0.0,
                )
            return stats

    def get_most_healed_objects(self, since: datetime, limit: int = 10) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_MOST_HEALED_OBJECTS_SINCE, (_timestamp(since), limit))
            return [
                {"object_id": object_id, "heal_count": heal_count}
                for object_id, heal_count in cursor.fetchall()
            ]

    def get_recent_events(self, since: datetime, limit: int = 10) -> List[HealingEventData]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(SELECT_RECENT_EVENTS_SINCE, (_timestamp(since), limit))
            return [self._row_to_event(row) for row in cursor.fetchall()]

    @staticmethod
    def _build_where(filters: HealingEventFilter) -> Tuple[List[str], List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []

        if filters.test_case_id is not None:
            clauses.append("test_case_id = ?")
            params.append(filters.test_case_id)
        if filters.object_id is not None:
            clauses.append("object_id = ?")
            params.append(filters.object_id)
        if filters.failed_locator is not None:
            clauses.append("failed_locator = ?")
            params.append(filters.failed_locator)
        if filters.strategy is not None:
            clauses.append("strategy = ?")
            params.append(filters.strategy.value)
        if filters.auto_applied is not None:
            clauses.append("auto_applied = ?")
            params.append(int(filters.auto_applied))
        if filters.pending_only:
            clauses.append("auto_applied = 0 AND approved IS NULL")
        elif filters.approved is not None:
            clauses.append("approved = ?")
            params.append(int(filters.approved))
        if filters.since is not None:
            clauses.append("created_at >= ?")
            params.append(_timestamp(filters.since))
        if filters.until is not None:
            clauses.append("created_at <= ?")
            params.append(_timestamp(filters.until))

        return clauses, params

    @staticmethod
    def _row_to_event(row: tuple) -> HealingEventData:
        (event_id, test_result_id, test_case_id, object_id, step_index,
         failed_locator, healed_locator, strategy, confidence,
         auto_applied, approved, approved_by, approved_at,
         metadata, created_at) = row

        return HealingEventData(
            id=event_id,
            test_result_id=test_result_id,
            test_case_id=test_case_id,
            object_id=object_id,
            step_index=step_index,
            failed_locator=failed_locator,
            healed_locator=healed_locator,
            strategy=HealingStrategyName(strategy) if strategy else None,
            confidence=confidence,
            auto_applied=bool(auto_applied),
            approved=_optional_bool(approved),
            approved_by=approved_by,
            approved_at=datetime.fromisoformat(approved_at) if approved_at else None,
            metadata=json.loads(metadata) if metadata else {},
            created_at=datetime.fromisoformat(created_at),
        )
