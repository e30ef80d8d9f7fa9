"""
Registry of running and finished testing sessions.

Each session owns its reporter, cancellation token and orchestrator task;
the healing event store is the only collaborator sessions share.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from ..core.config import settings
from ..core.metrics import MetricsCollector, get_metrics_collector
from ..core.models import (
    AutonomousTestingConfig,
    MultiPanelTestingConfig,
    MultiPanelTestReport,
    ProgressUpdate,
    Report,
    SessionState,
)
from .ai_client import AIClient, get_ai_client
from .autonomous_orchestrator import AUTONOMOUS_PHASES, AutonomousTestingOrchestrator, PhaseError
from .browser import PlaywrightBrowserFactory
from .cancellation import CancellationToken, SessionCancelledError
from .healing_event_store import HealingEventStore, get_healing_event_store
from .multi_panel_orchestrator import MultiPanelOrchestrator, multi_panel_phases
from .progress import ProgressReporter

logger = logging.getLogger(__name__)

BrowserFactoryProvider = Callable[[bool], Any]


class SessionKind(Enum):
    AUTONOMOUS = "autonomous"
    MULTI_PANEL = "multi_panel"


class SessionLimitError(Exception):
    """Too many sessions are running."""


@dataclass
class TestingSession:
    __test__ = False

    session_id: str
    kind: SessionKind
    config: Union[AutonomousTestingConfig, MultiPanelTestingConfig]
    reporter: ProgressReporter
    token: CancellationToken
    orchestrator: Any
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    result: Optional[Union[Report, MultiPanelTestReport]] = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def state(self) -> SessionState:
        return self.orchestrator.state

    @property
    def error(self) -> Optional[str]:
        return self.orchestrator.error

    @property
    def is_running(self) -> bool:
        return not self.state.is_terminal

    def status(self) -> Dict[str, Any]:
        history = self.reporter.history
        latest = history[-1] if history else None
        return {
            "session_id": self.session_id,
            "kind": self.kind.value,
            "state": self.state.value,
            "phase": self.reporter.current_phase,
            "progress": latest.progress if latest else 0.0,
            "message": latest.message if latest else "",
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "config": self.config.to_dict(),
        }

    def error_payload(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "error": self.error,
            "traceback": self.orchestrator.error_traceback,
        }


class SessionRegistry:
    """Creates, tracks and cancels testing sessions."""

    def __init__(self, event_store: Optional[HealingEventStore] = None,
                 ai_client: Optional[AIClient] = None,
                 browser_factory_provider: Optional[BrowserFactoryProvider] = None,
                 max_concurrent_sessions: Optional[int] = None,
                 retention_hours: Optional[float] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.event_store = event_store
        self.ai_client = ai_client
        self.browser_factory_provider = browser_factory_provider or \
            (lambda headless: PlaywrightBrowserFactory(headless=headless))
        self.max_concurrent_sessions = max_concurrent_sessions or settings.MAX_CONCURRENT_SESSIONS
        self.retention_hours = settings.SESSION_RETENTION_HOURS if retention_hours is None else retention_hours
        self.metrics = metrics or get_metrics_collector()
        self.sessions: Dict[str, TestingSession] = {}
        self.session_lock = asyncio.Lock()

    @property
    def active_count(self) -> int:
        return sum(1 for s in self.sessions.values() if s.is_running)

    async def create_autonomous(self, config: AutonomousTestingConfig) -> TestingSession:
        """Start an autonomous testing session in the background."""
        def build(session_id: str, reporter: ProgressReporter, token: CancellationToken):
            return AutonomousTestingOrchestrator(
                session_id, config, self.browser_factory_provider(config.headless),
                reporter=reporter,
                token=token,
                event_store=self.event_store,
                ai_client=self.ai_client,
            )
        return await self._launch(SessionKind.AUTONOMOUS, config, AUTONOMOUS_PHASES, build)

    async def create_multi_panel(self, config: MultiPanelTestingConfig) -> TestingSession:
        """Start a multi-panel testing session in the background."""
        def build(session_id: str, reporter: ProgressReporter, token: CancellationToken):
            return MultiPanelOrchestrator(
                session_id, config, self.browser_factory_provider(config.headless),
                reporter=reporter,
                token=token,
                event_store=self.event_store,
                ai_client=self.ai_client,
            )
        return await self._launch(SessionKind.MULTI_PANEL, config, multi_panel_phases(config), build)

    async def _launch(self, kind: SessionKind, config, phases, build) -> TestingSession:
        async with self.session_lock:
            self._prune_finished(self.retention_hours)
            if self.active_count >= self.max_concurrent_sessions:
                raise SessionLimitError(
                    f"Maximum of {self.max_concurrent_sessions} concurrent sessions reached"
                )

            session_id = str(uuid.uuid4())
            reporter = ProgressReporter(session_id, phases)
            token = CancellationToken()
            session = TestingSession(
                session_id=session_id,
                kind=kind,
                config=config,
                reporter=reporter,
                token=token,
                orchestrator=build(session_id, reporter, token),
            )
            self.sessions[session_id] = session

        session.task = asyncio.create_task(self._run(session))
        self.metrics.set_active_sessions(self.active_count)
        logger.info(f"Started {kind.value} session {session_id}")
        return session

    async def _run(self, session: TestingSession) -> None:
        try:
            session.result = await session.orchestrator.run()
            logger.info(f"Session {session.session_id} completed")
        except PhaseError:
            # Already reported by the orchestrator
            pass
        except (SessionCancelledError, asyncio.CancelledError):
            if not session.state.is_terminal:
                session.orchestrator.mark_cancelled()
        except Exception as e:
            logger.error(f"Session {session.session_id} crashed: {e}", exc_info=True)
            session.orchestrator.mark_failed(PhaseError(session.reporter.current_phase or "startup", e))
        finally:
            session.completed_at = datetime.now()
            self.metrics.set_active_sessions(self.active_count)

    def get(self, session_id: str) -> Optional[TestingSession]:
        return self.sessions.get(session_id)

    def list(self) -> List[TestingSession]:
        return sorted(self.sessions.values(), key=lambda s: s.created_at, reverse=True)

    def subscribe(self, session_id: str,
                  listener: Callable[[ProgressUpdate], None]) -> Callable[[], None]:
        """
        Attach a progress listener.

        Returns:
            A callable removing the listener; safe to call more than once

        Raises:
            KeyError: If the session does not exist
        """
        session = self.sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        return session.reporter.subscribe(listener)

    async def cancel(self, session_id: str, reason: str = "Cancelled by user") -> bool:
        """Cancel a running session; False if it is unknown or already finished."""
        session = self.sessions.get(session_id)
        if session is None or not session.is_running:
            return False

        session.token.cancel(reason)
        if session.task is not None and not session.task.done():
            session.task.cancel()
            try:
                await session.task
            except asyncio.CancelledError:
                # Cancelled before the run started
                session.completed_at = datetime.now()
        if session.is_running:
            session.orchestrator.mark_cancelled()
        logger.info(f"Cancelled session {session_id}: {reason}")
        return True

    async def cleanup_completed_sessions(self, retention_hours: Optional[float] = None) -> int:
        """Drop finished sessions older than the retention period.

        Args:
            retention_hours: Hours to retain finished sessions; defaults to the
                registry setting

        Returns:
            Number of sessions removed
        """
        async with self.session_lock:
            return self._prune_finished(self.retention_hours if retention_hours is None else retention_hours)

    def _prune_finished(self, retention_hours: float) -> int:
        cutoff_time = datetime.now() - timedelta(hours=retention_hours)
        expired = [
            session_id for session_id, session in self.sessions.items()
            if not session.is_running and session.completed_at and session.completed_at < cutoff_time
        ]
        for session_id in expired:
            del self.sessions[session_id]
        if expired:
            logger.info(f"Cleaned up {len(expired)} finished sessions")
        return len(expired)

    async def shutdown(self) -> None:
        for session_id in [s.session_id for s in self.sessions.values() if s.is_running]:
            await self.cancel(session_id, "Service shutdown")


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Get or create the process-wide session registry."""
    global _registry

    if _registry is None:
        _registry = SessionRegistry(
            event_store=get_healing_event_store(),
            ai_client=get_ai_client() if settings.AI_ENABLED else None,
        )
    return _registry
