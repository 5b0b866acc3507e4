from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from .errors import OutOfOrder, WrongSession
from .lifecycle import Clock, SessionLifecycle, utc_now
from .models import Capture, CaptureOrigin, SessionStatus


class CaptureAccumulator:
    """Arrival-ordered capture log for one session.

    The "analysed" watermark only moves through ``mark_analyzed``, which the
    service calls after a validated analysis. Failed attempts leave it alone, so
    the next pass sees the old captures plus whatever arrived since.
    """

    def __init__(self, lifecycle: SessionLifecycle, clock: Clock = utc_now):
        self._lifecycle = lifecycle
        self._clock = clock
        self._captures: List[Capture] = []
        self._analyzed_through = -1

    @property
    def session_id(self) -> str:
        return self._lifecycle.session.id

    def append(
        self,
        session_id: str,
        captured_at: datetime,
        origin: CaptureOrigin | str,
        image: bytes = b"",
        *,
        window_title: str = "",
        application: str = "",
    ) -> Capture:
        if session_id != self.session_id:
            raise WrongSession(f"Capture for session {session_id} sent to session {self.session_id}")
        status = self._lifecycle.status
        if status is not SessionStatus.ACTIVE:
            raise WrongSession(f"Session {self.session_id} is {status.value}, captures are not accepted")

        if captured_at.tzinfo is None:
            raise ValueError(f"Capture timestamp {captured_at.isoformat()} has no timezone")
        started_at = self._lifecycle.session.started_at
        if captured_at < started_at:
            raise OutOfOrder(f"Capture at {captured_at.isoformat()} precedes session start {started_at.isoformat()}")
        last = self.last_capture()
        if last is not None and captured_at < last.captured_at:
            raise OutOfOrder(
                f"Capture at {captured_at.isoformat()} precedes previous capture at {last.captured_at.isoformat()}"
            )

        capture = Capture(
            id=uuid.uuid4().hex,
            session_id=session_id,
            sequence=len(self._captures),
            captured_at=captured_at,
            origin=CaptureOrigin(origin),
            image=image,
            window_title=window_title,
            application=application,
        )
        self._captures.append(capture)
        return capture

    def last_capture(self) -> Optional[Capture]:
        return self._captures[-1] if self._captures else None

    def captures(self) -> List[Capture]:
        return list(self._captures)

    def pending(self) -> List[Capture]:
        return self._captures[self._analyzed_through + 1 :]

    def total_count(self) -> int:
        return len(self._captures)

    def count_since_last_analysis(self) -> int:
        return len(self._captures) - (self._analyzed_through + 1)

    def session_age_seconds(self) -> float:
        return max(0.0, (self._clock() - self._lifecycle.session.started_at).total_seconds())

    def mark_analyzed(self, through_sequence: int) -> None:
        if through_sequence > self._analyzed_through:
            self._analyzed_through = min(through_sequence, len(self._captures) - 1)
