"""Core data models for the TestMaster healing engine and testing pipeline."""

from .healing_models import (
    Identifier,
    LocatorType,
    LocatorOption,
    HealingStrategyName,
    STRATEGY_ORDER,
    HealingFailureReason,
    HealingContext,
    HealingResult,
    HealingFailure,
    HealingOutcome,
    HealingEventData,
    HealingEventFilter,
    StrategyStatistics,
    HealingStatistics,
    SuggestionThreshold,
    FallbackStrategyConfig,
    SimilarityStrategyConfig,
    VisualStrategyConfig,
    HistoricalStrategyConfig,
    StrategyConfig,
    HealingConfig,
)
from .autonomous_models import (
    TestingDepth,
    DepthLimits,
    DEPTH_LIMITS,
    SessionState,
    Credentials,
    AuthenticationConfig,
    AutonomousTestingConfig,
    ElementInfo,
    FormInfo,
    TableInfo,
    PageInfo,
    UserFlow,
    Interaction,
    WebsiteMap,
    APIEndpoint,
    APIMap,
    ApplicationMap,
    RegistrationResult,
    StepAction,
    LOCATOR_ACTIONS,
    TestCategory,
    TestPriority,
    TestStep,
    GeneratedTest,
    TestStatus,
    TestResult,
    ExecutionResults,
    FailureCategory,
    AnalysisResult,
    Report,
    ProgressUpdate,
)
from .multi_panel_models import (
    PanelType,
    UserAuthStrategy,
    UserPanelConfig,
    MultiPanelTestingConfig,
    FailureDetail,
    PanelTestResult,
    AccessControlResult,
    RBACTestResult,
    IssueSeverity,
    DataConsistencyIssue,
    DataConsistencyResult,
    MultiPanelTestReport,
)

__all__ = [
    "Identifier",
    "LocatorType",
    "LocatorOption",
    "HealingStrategyName",
    "STRATEGY_ORDER",
    "HealingFailureReason",
    "HealingContext",
    "HealingResult",
    "HealingFailure",
    "HealingOutcome",
    "HealingEventData",
    "HealingEventFilter",
    "StrategyStatistics",
    "HealingStatistics",
    "SuggestionThreshold",
    "FallbackStrategyConfig",
    "SimilarityStrategyConfig",
    "VisualStrategyConfig",
    "HistoricalStrategyConfig",
    "StrategyConfig",
    "HealingConfig",
    "TestingDepth",
    "DepthLimits",
    "DEPTH_LIMITS",
    "SessionState",
    "Credentials",
    "AuthenticationConfig",
    "AutonomousTestingConfig",
    "ElementInfo",
    "FormInfo",
    "TableInfo",
    "PageInfo",
    "UserFlow",
    "Interaction",
    "WebsiteMap",
    "APIEndpoint",
    "APIMap",
    "ApplicationMap",
    "RegistrationResult",
    "StepAction",
    "LOCATOR_ACTIONS",
    "TestCategory",
    "TestPriority",
    "TestStep",
    "GeneratedTest",
    "TestStatus",
    "TestResult",
    "ExecutionResults",
    "FailureCategory",
    "AnalysisResult",
    "Report",
    "ProgressUpdate",
    "PanelType",
    "UserAuthStrategy",
    "UserPanelConfig",
    "MultiPanelTestingConfig",
    "FailureDetail",
    "PanelTestResult",
    "AccessControlResult",
    "RBACTestResult",
    "IssueSeverity",
    "DataConsistencyIssue",
    "DataConsistencyResult",
    "MultiPanelTestReport",
]
