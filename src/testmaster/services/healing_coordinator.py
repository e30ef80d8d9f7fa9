"""
Healing Coordinator.

Runs the enabled strategies against one failure under a single deadline,
ranks what they propose, classifies the winner as auto-applied or pending
review, and records the attempt in the event store whatever the outcome.
"""

import asyncio
import logging
import sqlite3
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..core.logging_config import get_healing_logger
from ..core.metrics import MetricsCollector, get_metrics_collector
from ..core.models import (
    HealingConfig,
    HealingContext,
    HealingEventData,
    HealingFailure,
    HealingFailureReason,
    HealingOutcome,
    HealingResult,
)
from .ai_client import AIClient
from .browser import BrowserDriver
from .healing_event_store import HealingEventStore
from .healing_strategies import HealingStrategy, build_default_strategies
from .locator_catalog import LocatorCatalog

logger = logging.getLogger(__name__)


class HealingCoordinator:
    """Coordinates locator healing across strategies."""

    def __init__(self, strategies: Sequence[HealingStrategy],
                 event_store: Optional[HealingEventStore] = None,
                 metrics: Optional[MetricsCollector] = None):
        """
        Args:
            strategies: Strategy instances; kept in tie-break order
            event_store: Where attempts are recorded; None disables recording
            metrics: Collector for attempt counts and durations
        """
        self.strategies = sorted(strategies, key=lambda s: s.name.order)
        self.event_store = event_store
        self.metrics = metrics or get_metrics_collector()

    async def heal(self, context: HealingContext, config: HealingConfig,
                   browser: Optional[BrowserDriver] = None) -> HealingOutcome:
        """
        Attempt to find a replacement for ``context.failed_locator``.

        Returns:
            HealingResult classified against the thresholds, or
            HealingFailure with reason disabled, no_candidate or timeout
        """
        if not config.enabled:
            return HealingFailure(
                reason=HealingFailureReason.DISABLED,
                message="Self-healing is disabled",
            )

        healing_logger = get_healing_logger("coordinator", test_case=context.test_case_id)
        active = [s for s in self.strategies if s.name in config.enabled_strategies]
        start_time = time.monotonic()
        healing_logger.log_operation_start(
            "locator_healing",
            failed_locator=context.failed_locator,
            step_index=context.step_index,
            strategies=[s.name.value for s in active],
        )

        results, timed_out = await self._run_strategies(active, context, config, browser)
        total_time_ms = (time.monotonic() - start_time) * 1000

        usable = [
            r for r in results
            if r.new_locator and r.confidence >= config.suggestion_threshold.min
        ]
        usable.sort(key=lambda r: (-r.confidence, r.strategy.order))

        if not usable:
            reason = (HealingFailureReason.TIMEOUT if timed_out and not results
                      else HealingFailureReason.NO_CANDIDATE)
            failure = HealingFailure(
                reason=reason,
                message=self._failure_message(reason, config, results),
                metadata={
                    "reason": reason.value,
                    "strategies_attempted": [s.name.value for s in active],
                    "rejected_candidates": [self._summary(r) for r in results],
                    "total_time_ms": total_time_ms,
                },
            )
            failure.event_id = await self._record(HealingEventData(
                test_case_id=context.test_case_id,
                test_result_id=context.test_result_id,
                object_id=context.object_id,
                step_index=context.step_index,
                failed_locator=context.failed_locator,
                healed_locator="",
                strategy=None,
                confidence=0.0,
                auto_applied=False,
                approved=False,
                metadata=dict(failure.metadata, error_message=context.error_message),
            ))
            healing_logger.log_operation_failure(
                "locator_healing", total_time_ms, failure.message, error_code=reason.value
            )
            self.metrics.record_healing_attempt(None, False, total_time_ms / 1000, reason=reason.value)
            return failure

        best = usable[0]
        best.auto_applied = best.confidence >= config.auto_apply_threshold
        best.approved = None
        best.metadata["runner_up_candidates"] = [self._summary(r) for r in usable[1:]]
        best.metadata["total_time_ms"] = total_time_ms

        best.event_id = await self._record(HealingEventData(
            test_case_id=context.test_case_id,
            test_result_id=context.test_result_id,
            object_id=context.object_id,
            step_index=context.step_index,
            failed_locator=context.failed_locator,
            healed_locator=best.new_locator,
            strategy=best.strategy,
            confidence=best.confidence,
            auto_applied=best.auto_applied,
            approved=None,
            metadata=dict(best.metadata),
        ))
        healing_logger.log_operation_success(
            "locator_healing", total_time_ms,
            strategy=best.strategy.value,
            new_locator=best.new_locator,
            confidence=best.confidence,
            auto_applied=best.auto_applied,
        )
        self.metrics.record_healing_attempt(best.strategy.value, True, total_time_ms / 1000,
                                            auto_applied=best.auto_applied)
        return best

    async def _run_strategies(self, strategies: List[HealingStrategy], context: HealingContext,
                              config: HealingConfig,
                              browser: Optional[BrowserDriver]) -> Tuple[List[HealingResult], bool]:
        """
        Race the strategies against the healing deadline.

        Returns:
            Results in hand at the deadline, and whether any strategy was cut off
        """
        if not strategies:
            return [], False

        tasks = [
            asyncio.create_task(self._run_strategy(strategy, context, config, browser))
            for strategy in strategies
        ]
        done, pending = await asyncio.wait(tasks, timeout=config.max_healing_time / 1000)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(f"Healing deadline of {config.max_healing_time}ms cut off {len(pending)} strategies")

        results = [task.result() for task in tasks if task in done]
        return [r for r in results if r is not None], bool(pending)

    async def _run_strategy(self, strategy: HealingStrategy, context: HealingContext,
                            config: HealingConfig,
                            browser: Optional[BrowserDriver]) -> Optional[HealingResult]:
        start_time = time.monotonic()
        try:
            result = await strategy.attempt_heal(context, config, browser=browser)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # A broken strategy must not take the others down with it
            logger.warning(f"{strategy.name.value} strategy failed: {e}", exc_info=True)
            return None

        elapsed_ms = (time.monotonic() - start_time) * 1000
        if result is None:
            logger.debug(f"{strategy.name.value} strategy found no candidate in {elapsed_ms:.0f}ms")
            return None

        result.strategy = strategy.name
        result.metadata["execution_time_ms"] = elapsed_ms
        return result

    async def _record(self, event: HealingEventData) -> Optional[int]:
        """Persist an event; failures are logged and never change the outcome."""
        if self.event_store is None:
            return None
        try:
            return await self.event_store.save(event)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to record healing event for test case {event.test_case_id}: {e}")
            return None

    @staticmethod
    def _summary(result: HealingResult) -> Dict[str, Any]:
        return {
            "strategy": result.strategy.value,
            "new_locator": result.new_locator,
            "confidence": result.confidence,
        }

    @staticmethod
    def _failure_message(reason: HealingFailureReason, config: HealingConfig,
                         results: List[HealingResult]) -> str:
        if reason == HealingFailureReason.TIMEOUT:
            return f"No strategy produced a candidate within {config.max_healing_time}ms"
        if results:
            best = max(r.confidence for r in results)
            return (f"Best candidate confidence {best:.2f} is below "
                    f"the {config.suggestion_threshold.min:.2f} threshold")
        return "No strategy produced a candidate"


def create_healing_coordinator(event_store: HealingEventStore,
                               catalog: Optional[LocatorCatalog] = None,
                               ai_client: Optional[AIClient] = None,
                               metrics: Optional[MetricsCollector] = None) -> HealingCoordinator:
    """Coordinator wired with the four default strategies."""
    return HealingCoordinator(build_default_strategies(event_store, catalog, ai_client), event_store, metrics)
