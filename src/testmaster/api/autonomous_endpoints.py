"""
Autonomous testing API endpoints.

Sessions run in the background; clients poll ``/status`` or follow
``/progress`` (Server-Sent Events) and fetch ``/result`` once finished.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from ..core.models import (
    AuthenticationConfig,
    AutonomousTestingConfig,
    Credentials,
    MultiPanelTestingConfig,
    ProgressUpdate,
    SessionState,
    TestingDepth,
    UserAuthStrategy,
    UserPanelConfig,
)
from ..services.progress import TERMINAL_PHASES
from ..services.session_registry import SessionLimitError, SessionRegistry, get_session_registry

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 15.0

router = APIRouter(prefix="/autonomous", tags=["autonomous"])


class CredentialsModel(BaseModel):
    username: str
    password: str

    def to_credentials(self) -> Credentials:
        return Credentials(self.username, self.password)


class AuthenticationModel(BaseModel):
    login_url: str
    credentials: CredentialsModel


class AutonomousStartRequest(BaseModel):
    website_url: Optional[str] = None
    api_url: Optional[str] = None
    depth: TestingDepth = TestingDepth.SHALLOW
    parallel_workers: int = Field(5, ge=1, le=20)
    enable_healing: bool = True
    capture_video: bool = False
    capture_screenshots: bool = True
    headless: bool = True
    authentication: Optional[AuthenticationModel] = None
    auto_register: bool = False
    test_rbac: bool = False
    ai_analysis_enabled: bool = True
    max_pages: Optional[int] = Field(None, ge=1)

    def to_config(self) -> AutonomousTestingConfig:
        """
        Raises:
            ValueError: If neither a website nor an API URL is given
        """
        authentication = None
        if self.authentication is not None:
            authentication = AuthenticationConfig(
                login_url=self.authentication.login_url,
                credentials=self.authentication.credentials.to_credentials(),
            )
        return AutonomousTestingConfig(
            website_url=self.website_url,
            api_url=self.api_url,
            depth=self.depth,
            parallel_workers=self.parallel_workers,
            enable_healing=self.enable_healing,
            capture_video=self.capture_video,
            capture_screenshots=self.capture_screenshots,
            headless=self.headless,
            authentication=authentication,
            auto_register=self.auto_register,
            test_rbac=self.test_rbac,
            ai_analysis_enabled=self.ai_analysis_enabled,
            max_pages=self.max_pages,
        )


class UserPanelModel(BaseModel):
    enabled: bool = False
    url: Optional[str] = None
    auth_strategy: UserAuthStrategy = UserAuthStrategy.PROVIDED
    credentials: Optional[CredentialsModel] = None


class MultiPanelStartRequest(BaseModel):
    landing_url: str
    admin_url: str
    admin_credentials: CredentialsModel
    login_url: Optional[str] = None
    user_panel: UserPanelModel = Field(default_factory=UserPanelModel)
    depth: TestingDepth = TestingDepth.SHALLOW
    enable_healing: bool = True
    capture_video: bool = False
    capture_screenshots: bool = True
    test_rbac: bool = True
    test_data_consistency: bool = True
    parallel_workers: int = Field(3, ge=1, le=20)
    max_pages_per_panel: Optional[int] = Field(None, ge=1)
    headless: bool = True
    ai_analysis_enabled: bool = False

    def to_config(self) -> MultiPanelTestingConfig:
        user = self.user_panel
        if user.enabled and user.auth_strategy == UserAuthStrategy.PROVIDED and user.credentials is None:
            raise ValueError("user_panel.credentials are required when auth_strategy is 'provided'")
        return MultiPanelTestingConfig(
            landing_url=self.landing_url,
            admin_url=self.admin_url,
            admin_credentials=self.admin_credentials.to_credentials(),
            login_url=self.login_url,
            user_panel=UserPanelConfig(
                enabled=user.enabled,
                url=user.url,
                auth_strategy=user.auth_strategy,
                credentials=user.credentials.to_credentials() if user.credentials else None,
            ),
            depth=self.depth,
            enable_healing=self.enable_healing,
            capture_video=self.capture_video,
            capture_screenshots=self.capture_screenshots,
            test_rbac=self.test_rbac,
            test_data_consistency=self.test_data_consistency,
            parallel_workers=self.parallel_workers,
            max_pages_per_panel=self.max_pages_per_panel,
            headless=self.headless,
            ai_analysis_enabled=self.ai_analysis_enabled,
        )


def _session_or_404(registry: SessionRegistry, session_id: str):
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


@router.post("/start")
async def start_autonomous_testing(request: AutonomousStartRequest,
                                   registry: SessionRegistry = Depends(get_session_registry)):
    """Start an autonomous crawl, generate, execute and analyze session."""
    try:
        session = await registry.create_autonomous(request.to_config())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionLimitError as e:
        raise HTTPException(status_code=429, detail=str(e))
    return {"session_id": session.session_id, "status": "started"}


@router.post("/multi-panel/start")
async def start_multi_panel_testing(request: MultiPanelStartRequest,
                                    registry: SessionRegistry = Depends(get_session_registry)):
    """Start a landing, user and admin panel testing session."""
    try:
        session = await registry.create_multi_panel(request.to_config())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SessionLimitError as e:
        raise HTTPException(status_code=429, detail=str(e))
    return {"session_id": session.session_id, "status": "started"}


@router.get("/sessions")
async def list_sessions(registry: SessionRegistry = Depends(get_session_registry)):
    sessions = registry.list()
    return {
        "sessions": [s.status() for s in sessions],
        "total": len(sessions),
        "active": registry.active_count,
    }


@router.get("/{session_id}/status")
async def get_session_status(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    return _session_or_404(registry, session_id).status()


async def progress_events(history: List[ProgressUpdate], queue: "asyncio.Queue[ProgressUpdate]",
                          is_disconnected: Callable[[], Awaitable[bool]],
                          unsubscribe: Callable[[], None],
                          heartbeat: float = HEARTBEAT_SECONDS) -> AsyncIterator[Dict[str, Any]]:
    """
    SSE events for a session: the replayed history, then live updates.

    Stops after a terminal update or when the client goes away; the
    listener is always removed.
    """
    try:
        for update in history:
            yield {"event": "progress", "data": json.dumps(update.to_dict())}
            if update.phase in TERMINAL_PHASES:
                return

        while True:
            if await is_disconnected():
                logger.debug("Progress client disconnected")
                return
            try:
                update = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                yield {"event": "heartbeat", "data": json.dumps({"timestamp": datetime.now().isoformat()})}
                continue
            yield {"event": "progress", "data": json.dumps(update.to_dict())}
            if update.phase in TERMINAL_PHASES:
                return
    finally:
        unsubscribe()


@router.get("/{session_id}/progress")
async def stream_progress(session_id: str, request: Request,
                          registry: SessionRegistry = Depends(get_session_registry)):
    """Server-Sent Events stream of a session's progress."""
    session = _session_or_404(registry, session_id)

    queue: asyncio.Queue = asyncio.Queue()
    # History snapshot and subscription happen without yielding to the loop
    history = session.reporter.history
    unsubscribe = registry.subscribe(session_id, queue.put_nowait)

    return EventSourceResponse(progress_events(history, queue, request.is_disconnected, unsubscribe))


@router.get("/{session_id}/result")
async def get_session_result(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    """The final report; 409 while the session is still running."""
    session = _session_or_404(registry, session_id)

    if session.is_running:
        raise HTTPException(status_code=409, detail=f"Session {session_id} is still {session.state.value}")
    if session.state == SessionState.ERROR:
        return {"status": "error", **session.error_payload()}
    if session.state == SessionState.CANCELLED or session.result is None:
        return {"status": session.state.value, "session_id": session_id, "report": None}
    return {"status": "completed", "session_id": session_id, "report": session.result.to_dict()}


@router.post("/{session_id}/cancel")
async def cancel_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    _session_or_404(registry, session_id)
    if not await registry.cancel(session_id):
        raise HTTPException(status_code=409, detail=f"Session {session_id} already finished")
    return {"session_id": session_id, "status": "cancelled"}
