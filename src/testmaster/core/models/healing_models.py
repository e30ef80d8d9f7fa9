"""Data models for the self-healing locator engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any, Tuple, Union
from enum import Enum


Identifier = Union[int, str]


class LocatorType(Enum):
    """Ways a locator can address an element."""
    ID = "id"
    CSS = "css"
    XPATH = "xpath"
    TEXT = "text"
    ROLE = "role"
    TEST_ID = "testId"
    ARIA_LABEL = "ariaLabel"


class HealingStrategyName(Enum):
    """Healing strategies in tie-break priority order."""
    FALLBACK = "FALLBACK"
    SIMILARITY = "SIMILARITY"
    VISUAL = "VISUAL"
    HISTORICAL = "HISTORICAL"

    @property
    def order(self) -> int:
        return STRATEGY_ORDER.index(self)


STRATEGY_ORDER: Tuple[HealingStrategyName, ...] = (
    HealingStrategyName.FALLBACK,
    HealingStrategyName.SIMILARITY,
    HealingStrategyName.VISUAL,
    HealingStrategyName.HISTORICAL,
)


class HealingFailureReason(Enum):
    """Why the coordinator could not produce a replacement locator."""
    DISABLED = "disabled"
    NO_CANDIDATE = "no_candidate"
    TIMEOUT = "timeout"


@dataclass
class LocatorOption:
    """A single way to find an element."""
    type: LocatorType
    value: str
    priority: int = 1
    success_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "value": self.value,
            "priority": self.priority,
            "success_rate": self.success_rate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LocatorOption':
        return cls(
            type=LocatorType(data["type"]),
            value=data["value"],
            priority=data.get("priority", 1),
            success_rate=data.get("success_rate"),
        )


@dataclass(frozen=True)
class HealingContext:
    """Immutable input to one healing attempt."""
    failed_locator: str
    test_case_id: Identifier
    step_index: int = 0
    object_id: Optional[Identifier] = None
    page_snapshot: Optional[str] = None
    error_message: Optional[str] = None
    previous_successful_locator: Optional[str] = None
    test_result_id: Optional[Identifier] = None
    reference_snapshot: Optional[str] = None
    reference_screenshot: Optional[bytes] = field(default=None, repr=False)
    page_url: Optional[str] = None

    def __post_init__(self):
        if self.step_index < 0:
            raise ValueError(f"step_index must be >= 0, got {self.step_index}")


@dataclass
class HealingResult:
    """Replacement locator proposed by a strategy.

    ``auto_applied``, ``approved`` and ``event_id`` are filled in by the
    coordinator once the result has been classified and recorded.
    """
    strategy: HealingStrategyName
    new_locator: str
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    auto_applied: bool = False
    approved: Optional[bool] = None
    event_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "new_locator": self.new_locator,
            "confidence": self.confidence,
            "metadata": self.metadata,
            "auto_applied": self.auto_applied,
            "approved": self.approved,
            "event_id": self.event_id,
        }


@dataclass
class HealingFailure:
    """Coordinator outcome when no usable replacement exists."""
    reason: HealingFailureReason
    message: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason.value,
            "message": self.message,
            "metadata": self.metadata,
            "event_id": self.event_id,
        }


HealingOutcome = Union[HealingResult, HealingFailure]


@dataclass
class HealingEventData:
    """Persisted record of one healing attempt."""
    test_case_id: Identifier
    step_index: int
    failed_locator: str
    healed_locator: str
    strategy: Optional[HealingStrategyName]
    confidence: float
    auto_applied: bool
    test_result_id: Optional[Identifier] = None
    object_id: Optional[Identifier] = None
    approved: Optional[bool] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    @property
    def successful(self) -> bool:
        """A heal counts as successful when auto-applied or approved."""
        return self.auto_applied or self.approved is True

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for API responses."""
        return {
            "id": self.id,
            "test_result_id": self.test_result_id,
            "test_case_id": self.test_case_id,
            "object_id": self.object_id,
            "step_index": self.step_index,
            "failed_locator": self.failed_locator,
            "healed_locator": self.healed_locator,
            "strategy": self.strategy.value if self.strategy else None,
            "confidence": self.confidence,
            "auto_applied": self.auto_applied,
            "approved": self.approved,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealingEventData':
        data = data.copy()
        if data.get("strategy"):
            data["strategy"] = HealingStrategyName(data["strategy"])
        for key in ("approved_at", "created_at"):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        if data.get("created_at") is None:
            data.pop("created_at", None)
        return cls(**data)


@dataclass
class HealingEventFilter:
    """Query predicates supported by the event store."""
    test_case_id: Optional[Identifier] = None
    object_id: Optional[Identifier] = None
    failed_locator: Optional[str] = None
    strategy: Optional[HealingStrategyName] = None
    auto_applied: Optional[bool] = None
    approved: Optional[bool] = None
    pending_only: bool = False
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None


@dataclass
class StrategyStatistics:
    attempts: int = 0
    successes: int = 0
    avg_confidence: float = 0.0
    avg_execution_time_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "success_rate": self.success_rate,
            "avg_confidence": self.avg_confidence,
            "avg_execution_time_ms": self.avg_execution_time_ms,
        }


@dataclass
class HealingStatistics:
    """Aggregates over the event store for a rolling window."""
    days: int
    total_attempts: int = 0
    successful_heals: int = 0
    pending_approvals: int = 0
    by_strategy: Dict[str, StrategyStatistics] = field(default_factory=dict)
    most_healed_objects: List[Dict[str, Any]] = field(default_factory=list)
    recent_heals: List[HealingEventData] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if not self.total_attempts:
            return 0.0
        return self.successful_heals / self.total_attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "days": self.days,
            "total_attempts": self.total_attempts,
            "successful_heals": self.successful_heals,
            "success_rate": self.success_rate,
            "pending_approvals": self.pending_approvals,
            "by_strategy": {name: stats.to_dict() for name, stats in self.by_strategy.items()},
            "most_healed_objects": self.most_healed_objects,
            "recent_heals": [event.to_dict() for event in self.recent_heals],
        }


@dataclass(frozen=True)
class SuggestionThreshold:
    min: float = 0.7
    max: float = 0.9


@dataclass(frozen=True)
class FallbackStrategyConfig:
    max_locators_to_try: int = 5
    default_confidence: float = 0.75
    visibility_timeout_ms: int = 2000


@dataclass(frozen=True)
class SimilarityStrategyConfig:
    min_similarity_score: float = 0.8
    max_candidates: int = 500


@dataclass(frozen=True)
class VisualStrategyConfig:
    match_threshold: float = 0.85
    max_regions: int = 5


@dataclass(frozen=True)
class HistoricalStrategyConfig:
    lookback_days: int = 30
    min_success_count: int = 2


@dataclass(frozen=True)
class StrategyConfig:
    fallback: FallbackStrategyConfig = field(default_factory=FallbackStrategyConfig)
    similarity: SimilarityStrategyConfig = field(default_factory=SimilarityStrategyConfig)
    visual: VisualStrategyConfig = field(default_factory=VisualStrategyConfig)
    historical: HistoricalStrategyConfig = field(default_factory=HistoricalStrategyConfig)


@dataclass(frozen=True)
class HealingConfig:
    """Process-wide healing configuration, immutable once loaded."""
    enabled: bool = True
    auto_apply_threshold: float = 0.9
    suggestion_threshold: SuggestionThreshold = field(default_factory=SuggestionThreshold)
    max_healing_time: int = 10000  # milliseconds
    enabled_strategies: Tuple[HealingStrategyName, ...] = STRATEGY_ORDER
    strategy_config: StrategyConfig = field(default_factory=StrategyConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to the nested dictionary layout used on disk."""
        sc = self.strategy_config
        return {
            "enabled": self.enabled,
            "auto_apply_threshold": self.auto_apply_threshold,
            "suggestion_threshold": {
                "min": self.suggestion_threshold.min,
                "max": self.suggestion_threshold.max,
            },
            "max_healing_time": self.max_healing_time,
            "enabled_strategies": [s.value for s in self.enabled_strategies],
            "strategy_config": {
                "fallback": {
                    "max_locators_to_try": sc.fallback.max_locators_to_try,
                    "default_confidence": sc.fallback.default_confidence,
                    "visibility_timeout_ms": sc.fallback.visibility_timeout_ms,
                },
                "similarity": {
                    "min_similarity_score": sc.similarity.min_similarity_score,
                    "max_candidates": sc.similarity.max_candidates,
                },
                "visual": {
                    "match_threshold": sc.visual.match_threshold,
                    "max_regions": sc.visual.max_regions,
                },
                "historical": {
                    "lookback_days": sc.historical.lookback_days,
                    "min_success_count": sc.historical.min_success_count,
                },
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealingConfig':
        """Create configuration from dictionary.

        Raises:
            ValueError: If a strategy name is unknown
        """
        thresholds = data.get("suggestion_threshold", {})
        strategies = data.get("strategy_config", {})
        return cls(
            enabled=data.get("enabled", True),
            auto_apply_threshold=data.get("auto_apply_threshold", 0.9),
            suggestion_threshold=SuggestionThreshold(**thresholds),
            max_healing_time=data.get("max_healing_time", 10000),
            enabled_strategies=tuple(
                HealingStrategyName(s) for s in data.get(
                    "enabled_strategies", [s.value for s in STRATEGY_ORDER])
            ),
            strategy_config=StrategyConfig(
                fallback=FallbackStrategyConfig(**strategies.get("fallback", {})),
                similarity=SimilarityStrategyConfig(**strategies.get("similarity", {})),
                visual=VisualStrategyConfig(**strategies.get("visual", {})),
                historical=HistoricalStrategyConfig(**strategies.get("historical", {})),
            ),
        )
