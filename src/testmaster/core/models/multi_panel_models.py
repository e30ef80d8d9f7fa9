"""Data models for multi-panel (landing, user, admin) testing."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any
from enum import Enum

from .autonomous_models import Credentials, TestingDepth, PageInfo


class PanelType(Enum):
    """Panels in ascending privilege order."""
    LANDING = "landing"
    USER = "user"
    ADMIN = "admin"

    @property
    def privilege(self) -> int:
        return list(PanelType).index(self)


class UserAuthStrategy(Enum):
    PROVIDED = "provided"
    AUTO_REGISTER = "auto_register"


@dataclass(frozen=True)
class UserPanelConfig:
    enabled: bool = False
    url: Optional[str] = None
    auth_strategy: UserAuthStrategy = UserAuthStrategy.PROVIDED
    credentials: Optional[Credentials] = None


@dataclass(frozen=True)
class MultiPanelTestingConfig:
    landing_url: str
    admin_url: str
    admin_credentials: Credentials
    login_url: Optional[str] = None
    user_panel: UserPanelConfig = field(default_factory=UserPanelConfig)
    depth: TestingDepth = TestingDepth.SHALLOW
    enable_healing: bool = True
    capture_video: bool = False
    capture_screenshots: bool = True
    test_rbac: bool = True
    test_data_consistency: bool = True
    parallel_workers: int = 3
    max_pages_per_panel: Optional[int] = None
    headless: bool = True
    ai_analysis_enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "landing_url": self.landing_url,
            "admin_url": self.admin_url,
            "admin_username": self.admin_credentials.username,
            "login_url": self.login_url,
            "user_panel": {
                "enabled": self.user_panel.enabled,
                "url": self.user_panel.url,
                "auth_strategy": self.user_panel.auth_strategy.value,
            },
            "depth": self.depth.value,
            "enable_healing": self.enable_healing,
            "capture_video": self.capture_video,
            "test_rbac": self.test_rbac,
            "test_data_consistency": self.test_data_consistency,
            "parallel_workers": self.parallel_workers,
            "max_pages_per_panel": self.max_pages_per_panel,
            "headless": self.headless,
        }


@dataclass
class FailureDetail:
    test_name: str
    url: str
    error: str
    screenshot: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_name": self.test_name,
            "url": self.url,
            "error": self.error,
            "screenshot": self.screenshot,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class PanelTestResult:
    panel_type: PanelType
    panel_name: str
    pages: List[PageInfo] = field(default_factory=list)
    discovery_duration: float = 0.0  # milliseconds
    tests_generated: int = 0
    test_categories: Dict[str, int] = field(default_factory=dict)
    tests_passed: int = 0
    tests_failed: int = 0
    tests_healed: int = 0
    execution_duration: float = 0.0  # milliseconds
    coverage: float = 0.0
    failures: List[FailureDetail] = field(default_factory=list)
    screenshots: List[str] = field(default_factory=list)
    video: Optional[str] = None

    @property
    def total_tests(self) -> int:
        return self.tests_passed + self.tests_failed + self.tests_healed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "panel_type": self.panel_type.value,
            "panel_name": self.panel_name,
            "discovery": {
                "pages_discovered": len(self.pages),
                "discovery_duration": self.discovery_duration,
                "pages": [p.url for p in self.pages],
            },
            "test_generation": {
                "tests_generated": self.tests_generated,
                "test_categories": self.test_categories,
            },
            "execution": {
                "tests_passed": self.tests_passed,
                "tests_failed": self.tests_failed,
                "tests_healed": self.tests_healed,
                "execution_duration": self.execution_duration,
                "coverage": self.coverage,
            },
            "failures": [f.to_dict() for f in self.failures],
            "screenshots": self.screenshots,
            "video": self.video,
        }


@dataclass
class AccessControlResult:
    test_name: str
    url: str
    role: str
    expected_access: bool
    actual_access: bool
    status_code: Optional[int]
    message: str = ""

    @property
    def passed(self) -> bool:
        return self.expected_access == self.actual_access

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_name": self.test_name,
            "url": self.url,
            "role": self.role,
            "expected_access": self.expected_access,
            "actual_access": self.actual_access,
            "passed": self.passed,
            "status_code": self.status_code,
            "message": self.message,
        }


@dataclass
class RBACTestResult:
    results: List[AccessControlResult] = field(default_factory=list)

    @property
    def total_checks(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return self.total_checks - self.passed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_checks": self.total_checks,
            "passed": self.passed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class IssueSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class DataConsistencyIssue:
    check_name: str
    expected: Any
    actual: Any
    panels: List[PanelType]
    severity: IssueSeverity
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check_name": self.check_name,
            "expected": self.expected,
            "actual": self.actual,
            "panels": [p.value for p in self.panels],
            "severity": self.severity.value,
            "message": self.message,
        }


@dataclass
class DataConsistencyResult:
    total_checks: int = 0
    issues: List[DataConsistencyIssue] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.issues)

    @property
    def passed(self) -> int:
        return max(self.total_checks - self.failed, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_checks": self.total_checks,
            "passed": self.passed,
            "failed": self.failed,
            "issues": [i.to_dict() for i in self.issues],
        }


@dataclass
class MultiPanelTestReport:
    session_id: str
    duration: float  # milliseconds
    summary: Dict[str, Any]
    panels: Dict[str, PanelTestResult]
    rbac: Optional[RBACTestResult] = None
    data_consistency: Optional[DataConsistencyResult] = None
    files: Dict[str, str] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "timestamp": self.generated_at.isoformat(),
            "duration": self.duration,
            "summary": self.summary,
            "panels": {name: result.to_dict() for name, result in self.panels.items()},
            "rbac_tests": self.rbac.to_dict() if self.rbac else None,
            "data_consistency": self.data_consistency.to_dict() if self.data_consistency else None,
            "files": self.files,
        }
