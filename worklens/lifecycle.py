from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from .errors import InvalidState
from .models import Session, SessionStatus

Clock = Callable[[], datetime]
TransitionListener = Callable[[Session, SessionStatus, SessionStatus], None]

_TRANSITIONS: Dict[Tuple[SessionStatus, str], SessionStatus] = {
    (SessionStatus.IDLE, "start"): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, "pause"): SessionStatus.PAUSED,
    (SessionStatus.PAUSED, "resume"): SessionStatus.ACTIVE,
    (SessionStatus.ACTIVE, "stop"): SessionStatus.COMPLETED,
    (SessionStatus.PAUSED, "stop"): SessionStatus.COMPLETED,
}


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def can_transition(status: SessionStatus, action: str) -> bool:
    return (status, action) in _TRANSITIONS


class SessionLifecycle:
    """Owns a session's status and active-duration accounting.

    Only the transitions in ``_TRANSITIONS`` are legal; anything else raises
    ``InvalidState`` and leaves the session untouched. Active time is summed
    per active stretch, so paused intervals never count.
    """

    def __init__(self, session_id: str, owner_id: str, clock: Clock = utc_now):
        self._clock = clock
        self._active_since: Optional[datetime] = None
        self._listeners: List[TransitionListener] = []
        self.session = Session(id=session_id, owner_id=owner_id, goal="", started_at=clock())

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def start(self, goal: str) -> Session:
        now = self._transition("start")
        self.session.goal = goal
        self.session.started_at = now
        self._active_since = now
        self._emit(SessionStatus.IDLE)
        return self.session

    def pause(self) -> Session:
        now = self._transition("pause")
        self._close_active_stretch(now)
        self._emit(SessionStatus.ACTIVE)
        return self.session

    def resume(self) -> Session:
        now = self._transition("resume")
        self._active_since = now
        self._emit(SessionStatus.PAUSED)
        return self.session

    def stop(self) -> Session:
        previous = self.session.status
        now = self._transition("stop")
        self._close_active_stretch(now)
        self.session.ended_at = now
        self._emit(previous)
        return self.session

    def active_seconds(self) -> float:
        total = self.session.active_seconds
        if self._active_since is not None:
            total += max(0.0, (self._clock() - self._active_since).total_seconds())
        return total

    def _transition(self, action: str) -> datetime:
        current = self.session.status
        target = _TRANSITIONS.get((current, action))
        if target is None:
            raise InvalidState(f"Cannot {action} session {self.session.id} while {current.value}")
        now = self._clock()
        self.session.status = target
        return now

    def _close_active_stretch(self, now: datetime) -> None:
        if self._active_since is None:
            return
        self.session.active_seconds += max(0.0, (now - self._active_since).total_seconds())
        self._active_since = None

    def _emit(self, previous: SessionStatus) -> None:
        for listener in list(self._listeners):
            listener(self.session, previous, self.session.status)
