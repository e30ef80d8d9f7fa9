"""
Per-session progress reporting.

The reporter is the only channel through which a running session talks to
its observers. It keeps updates ordered: phases only move forward, progress
within a phase never decreases, and nothing is emitted after the session
reaches a terminal state.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.models import ProgressUpdate

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressUpdate], None]

ERROR_PHASE = "error"
CANCELLED_PHASE = "cancelled"
COMPLETED_PHASE = "completed"
TERMINAL_PHASES = (COMPLETED_PHASE, ERROR_PHASE, CANCELLED_PHASE)


class ProgressReporter:
    """Ordered progress stream with replay history for one session."""

    def __init__(self, session_id: str, phases: Optional[Sequence[str]] = None):
        """
        Args:
            session_id: Session the updates belong to
            phases: Optional expected phase order; when given, a phase may
                only be entered after every phase before it in this list
        """
        self.session_id = session_id
        self.phases = list(phases) if phases else None
        self._listeners: List[ProgressListener] = []
        self._history: List[ProgressUpdate] = []
        self._visited: List[str] = []
        self._current_phase: Optional[str] = None
        self._current_progress = 0.0
        self._terminal_phase: Optional[str] = None

    @property
    def current_phase(self) -> Optional[str]:
        return self._current_phase

    @property
    def is_terminal(self) -> bool:
        return self._terminal_phase is not None

    @property
    def history(self) -> List[ProgressUpdate]:
        return list(self._history)

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, phase: str, progress: float, message: str,
             details: Optional[Dict[str, Any]] = None) -> Optional[ProgressUpdate]:
        """
        Publish an update.

        Returns:
            The delivered update, or None when it was suppressed because the
            session already reached a terminal state

        Raises:
            ValueError: If the phase would move the session backwards
        """
        if self._terminal_phase is not None:
            logger.debug(f"Session {self.session_id}: dropping '{phase}' update after {self._terminal_phase}")
            return None

        if phase != self._current_phase:
            self._enter_phase(phase)

        progress = min(max(float(progress), self._current_progress, 0.0), 100.0)
        self._current_progress = progress

        update = ProgressUpdate(phase=phase, progress=progress, message=message, details=details)
        self._history.append(update)
        if phase in TERMINAL_PHASES:
            self._terminal_phase = phase
        self._deliver(update)
        return update

    def complete(self, message: str, details: Optional[Dict[str, Any]] = None) -> Optional[ProgressUpdate]:
        return self.emit(COMPLETED_PHASE, 100, message, details)

    def error(self, message: str, details: Optional[Dict[str, Any]] = None) -> Optional[ProgressUpdate]:
        """Emit the single error update for the session."""
        return self.emit(ERROR_PHASE, 0, message, details)

    def cancelled(self, message: str = "Session cancelled") -> Optional[ProgressUpdate]:
        return self.emit(CANCELLED_PHASE, 0, message)

    def _enter_phase(self, phase: str) -> None:
        if phase in self._visited:
            raise ValueError(f"Phase '{phase}' was already completed in session {self.session_id}")

        if self.phases is not None and phase not in TERMINAL_PHASES:
            if phase not in self.phases:
                raise ValueError(f"Unknown phase '{phase}' for session {self.session_id}")
            if self._current_phase in self.phases and \
                    self.phases.index(phase) < self.phases.index(self._current_phase):
                raise ValueError(f"Phase '{phase}' cannot follow '{self._current_phase}'")

        self._visited.append(phase)
        self._current_phase = phase
        self._current_progress = 0.0

    def _deliver(self, update: ProgressUpdate) -> None:
        # Listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.warning(f"Progress listener failed for session {self.session_id}: {e}")
