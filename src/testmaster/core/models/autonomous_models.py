"""Data models for the autonomous crawl, generate, execute, analyze pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Any
from enum import Enum

from .healing_models import LocatorOption


class TestingDepth(Enum):
    """Crawl depth tiers."""
    SHALLOW = "shallow"
    DEEP = "deep"
    EXHAUSTIVE = "exhaustive"


@dataclass(frozen=True)
class DepthLimits:
    max_pages: int
    max_link_depth: int
    max_interactions_per_page: int


DEPTH_LIMITS: Dict[TestingDepth, DepthLimits] = {
    TestingDepth.SHALLOW: DepthLimits(max_pages=10, max_link_depth=2, max_interactions_per_page=10),
    TestingDepth.DEEP: DepthLimits(max_pages=50, max_link_depth=4, max_interactions_per_page=25),
    TestingDepth.EXHAUSTIVE: DepthLimits(max_pages=200, max_link_depth=8, max_interactions_per_page=50),
}


class SessionState(Enum):
    """Lifecycle states of a testing session."""
    IDLE = "idle"
    DISCOVERY = "discovery"
    REGISTRATION = "registration"
    GENERATION = "generation"
    EXECUTION = "execution"
    ANALYSIS = "analysis"
    REPORT = "report"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.ERROR, SessionState.CANCELLED)


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str


@dataclass(frozen=True)
class AuthenticationConfig:
    login_url: str
    credentials: Credentials


@dataclass(frozen=True)
class AutonomousTestingConfig:
    """Configuration supplied whole at session start."""
    website_url: Optional[str] = None
    api_url: Optional[str] = None
    depth: TestingDepth = TestingDepth.SHALLOW
    parallel_workers: int = 5
    enable_healing: bool = True
    capture_video: bool = False
    capture_screenshots: bool = True
    headless: bool = True
    authentication: Optional[AuthenticationConfig] = None
    auto_register: bool = False
    test_rbac: bool = False
    ai_analysis_enabled: bool = True
    max_pages: Optional[int] = None

    def __post_init__(self):
        if not self.website_url and not self.api_url:
            raise ValueError("At least one of website_url or api_url is required")
        if self.parallel_workers < 1:
            raise ValueError(f"parallel_workers must be >= 1, got {self.parallel_workers}")

    @property
    def limits(self) -> DepthLimits:
        limits = DEPTH_LIMITS[self.depth]
        if self.max_pages:
            return DepthLimits(
                max_pages=min(self.max_pages, limits.max_pages),
                max_link_depth=limits.max_link_depth,
                max_interactions_per_page=limits.max_interactions_per_page,
            )
        return limits

    def to_dict(self) -> Dict[str, Any]:
        return {
            "website_url": self.website_url,
            "api_url": self.api_url,
            "depth": self.depth.value,
            "parallel_workers": self.parallel_workers,
            "enable_healing": self.enable_healing,
            "capture_video": self.capture_video,
            "capture_screenshots": self.capture_screenshots,
            "headless": self.headless,
            "authentication": {
                "login_url": self.authentication.login_url,
                "username": self.authentication.credentials.username,
            } if self.authentication else None,
            "auto_register": self.auto_register,
            "test_rbac": self.test_rbac,
            "ai_analysis_enabled": self.ai_analysis_enabled,
            "max_pages": self.max_pages,
        }


@dataclass
class ElementInfo:
    """An element discovered on a crawled page."""
    tag: str
    element_type: str
    locator: str
    page_url: str
    object_id: str
    text: str = ""
    name: str = ""
    input_type: str = ""
    placeholder: str = ""
    locators: List[LocatorOption] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    screenshot: Optional[bytes] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "element_type": self.element_type,
            "locator": self.locator,
            "page_url": self.page_url,
            "object_id": self.object_id,
            "text": self.text,
            "name": self.name,
            "input_type": self.input_type,
            "placeholder": self.placeholder,
            "locators": [option.to_dict() for option in self.locators],
        }


@dataclass
class FormInfo:
    page_url: str
    locator: str
    fields: List[ElementInfo] = field(default_factory=list)
    submit_locator: Optional[str] = None
    action: str = ""
    method: str = "get"
    kind: str = "generic"  # login, registration, search, contact, generic

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_url": self.page_url,
            "locator": self.locator,
            "fields": [f.to_dict() for f in self.fields],
            "submit_locator": self.submit_locator,
            "action": self.action,
            "method": self.method,
            "kind": self.kind,
        }


@dataclass
class TableInfo:
    locator: str
    headers: List[str] = field(default_factory=list)
    rows: List[List[str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"locator": self.locator, "headers": self.headers, "rows": self.rows}


@dataclass
class PageInfo:
    """A crawled page."""
    url: str
    title: str = ""
    depth: int = 0
    status_code: Optional[int] = None
    links: List[str] = field(default_factory=list)
    elements: List[ElementInfo] = field(default_factory=list)
    forms: List[FormInfo] = field(default_factory=list)
    tables: List[TableInfo] = field(default_factory=list)
    requires_auth: bool = False
    dom_snapshot: Optional[str] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "depth": self.depth,
            "status_code": self.status_code,
            "links": self.links,
            "elements": [e.to_dict() for e in self.elements],
            "forms": [f.to_dict() for f in self.forms],
            "tables": [t.to_dict() for t in self.tables],
            "requires_auth": self.requires_auth,
        }


@dataclass
class UserFlow:
    name: str
    flow_type: str  # login, registration, search, contact
    page_url: str
    form: Optional[FormInfo] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "flow_type": self.flow_type,
            "page_url": self.page_url,
            "description": self.description,
            "form": self.form.to_dict() if self.form else None,
        }


@dataclass
class Interaction:
    page_url: str
    element: ElementInfo
    action: str = "click"

    def to_dict(self) -> Dict[str, Any]:
        return {"page_url": self.page_url, "action": self.action, "element": self.element.to_dict()}


@dataclass
class WebsiteMap:
    base_url: str
    pages: List[PageInfo] = field(default_factory=list)
    user_flows: List[UserFlow] = field(default_factory=list)
    interactions: List[Interaction] = field(default_factory=list)

    def forms_of_kind(self, kind: str) -> List[FormInfo]:
        return [form for page in self.pages for form in page.forms if form.kind == kind]

    def page(self, url: str) -> Optional[PageInfo]:
        return next((p for p in self.pages if p.url == url), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "pages": [p.to_dict() for p in self.pages],
            "user_flows": [f.to_dict() for f in self.user_flows],
            "interactions": [i.to_dict() for i in self.interactions],
        }


@dataclass
class APIEndpoint:
    method: str
    path: str
    url: str
    summary: str = ""
    parameters: List[Dict[str, Any]] = field(default_factory=list)
    request_body: Optional[Dict[str, Any]] = None
    requires_auth: bool = False
    source: str = "probe"  # openapi, swagger, probe

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "url": self.url,
            "summary": self.summary,
            "parameters": self.parameters,
            "request_body": self.request_body,
            "requires_auth": self.requires_auth,
            "source": self.source,
        }


@dataclass
class APIMap:
    base_url: str
    endpoints: List[APIEndpoint] = field(default_factory=list)
    auth_type: str = "none"
    spec_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "endpoints": [e.to_dict() for e in self.endpoints],
            "auth_type": self.auth_type,
            "spec_url": self.spec_url,
        }


@dataclass
class ApplicationMap:
    """Output of the discovery phase."""
    website: Optional[WebsiteMap] = None
    api: Optional[APIMap] = None

    @property
    def page_count(self) -> int:
        return len(self.website.pages) if self.website else 0

    @property
    def endpoint_count(self) -> int:
        return len(self.api.endpoints) if self.api else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "website": self.website.to_dict() if self.website else None,
            "api": self.api.to_dict() if self.api else None,
        }


@dataclass
class RegistrationResult:
    success: bool
    page_url: str
    username: str = ""
    password: str = field(default="", repr=False)
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "page_url": self.page_url,
            "username": self.username,
            "message": self.message,
        }


class StepAction(Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    SELECT = "select"
    WAIT_FOR_NAVIGATION = "wait_for_navigation"
    WAIT = "wait"
    WAIT_FOR_LOAD_STATE = "wait_for_load_state"
    ASSERT = "assert"
    API_REQUEST = "api_request"
    CLEAR_SESSION = "clear_session"
    COMMENT = "comment"


LOCATOR_ACTIONS = (StepAction.CLICK, StepAction.FILL, StepAction.SELECT)


class TestCategory(Enum):
    __test__ = False

    NAVIGATION = "navigation"
    FORMS = "forms"
    CRUD = "crud"
    PERMISSIONS = "permissions"
    USER_FLOW = "user_flow"
    INTERACTION = "interaction"
    API = "api"
    E2E = "e2e"


class TestPriority(Enum):
    __test__ = False

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class TestStep:
    __test__ = False

    action: StepAction
    description: str = ""
    locator: Optional[str] = None
    value: Optional[str] = None
    object_id: Optional[str] = None
    alternatives: List[LocatorOption] = field(default_factory=list)
    reference_screenshot: Optional[bytes] = field(default=None, repr=False)
    options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "description": self.description,
            "locator": self.locator,
            "value": self.value,
            "object_id": self.object_id,
            "alternatives": [a.to_dict() for a in self.alternatives],
            "options": self.options,
        }


@dataclass
class GeneratedTest:
    id: str
    name: str
    category: TestCategory
    priority: TestPriority
    steps: List[TestStep] = field(default_factory=list)
    description: str = ""
    page_url: Optional[str] = None
    estimated_duration: int = 0  # seconds
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "priority": self.priority.value,
            "description": self.description,
            "page_url": self.page_url,
            "estimated_duration": self.estimated_duration,
            "tags": self.tags,
            "steps": [s.to_dict() for s in self.steps],
        }


class TestStatus(Enum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    HEALED = "healed"
    SKIPPED = "skipped"


@dataclass
class TestResult:
    __test__ = False

    test_id: str
    name: str
    category: TestCategory
    status: TestStatus
    duration_ms: float = 0.0
    error: Optional[str] = None
    failed_step: Optional[int] = None
    steps_executed: int = 0
    healing: List[Dict[str, Any]] = field(default_factory=list)
    screenshots: List[str] = field(default_factory=list)
    video: Optional[str] = None
    page_url: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "name": self.name,
            "category": self.category.value,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "failed_step": self.failed_step,
            "steps_executed": self.steps_executed,
            "healing": self.healing,
            "screenshots": self.screenshots,
            "video": self.video,
            "page_url": self.page_url,
            "started_at": self.started_at.isoformat(),
        }


@dataclass
class ExecutionResults:
    results: List[TestResult] = field(default_factory=list)
    total_duration: float = 0.0  # milliseconds

    def _with_status(self, status: TestStatus) -> List[TestResult]:
        return [r for r in self.results if r.status == status]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> List[TestResult]:
        return self._with_status(TestStatus.PASSED)

    @property
    def failed(self) -> List[TestResult]:
        return self._with_status(TestStatus.FAILED)

    @property
    def healed(self) -> List[TestResult]:
        return self._with_status(TestStatus.HEALED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "passed": len(self.passed),
            "failed": len(self.failed),
            "healed": len(self.healed),
            "total_duration": self.total_duration,
            "results": [r.to_dict() for r in self.results],
        }


class FailureCategory(Enum):
    APP_BUG = "APP_BUG"
    TEST_ISSUE = "TEST_ISSUE"
    ENVIRONMENT = "ENVIRONMENT"
    FLAKY = "FLAKY"


@dataclass
class AnalysisResult:
    test_id: str
    category: FailureCategory
    root_cause: str
    suggested_fix_dev: str
    suggested_fix_qa: str
    confidence: float
    source: str = "ai"  # ai, fallback

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "category": self.category.value,
            "root_cause": self.root_cause,
            "suggested_fix": {
                "for_developer": self.suggested_fix_dev,
                "for_qa": self.suggested_fix_qa,
            },
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass
class Report:
    session_id: str
    summary: Dict[str, Any]
    details: Dict[str, Any]
    files: Dict[str, str] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "summary": self.summary,
            "details": self.details,
            "files": self.files,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class ProgressUpdate:
    phase: str
    progress: float
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "progress": self.progress,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }
