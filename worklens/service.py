from __future__ import annotations

import dataclasses
import threading
import time
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .accumulator import CaptureAccumulator
from .config import AppSettings, PipelineSettings, ScoringSettings, TriggerSettings
from .context import GoalSource, build_context, snapshot_goals
from .errors import (
    AnalysisCancelled,
    InvalidState,
    PersistenceError,
    SessionNotFound,
    UpstreamUnavailable,
    WorklensError,
    WrongSession,
)
from .inference import InferenceAdapter
from .lifecycle import Clock, SessionLifecycle, utc_now
from .models import AnalysisPass, AnalysisResult, Capture, CaptureOrigin, Session, SessionScore, SessionStatus
from .scoring import ScoreReconciler
from .storage import ReportStore
from .trigger import evaluate
from .validator import ResponseValidator


@dataclass(frozen=True)
class AnalysisOutcome:
    result: AnalysisResult
    score: SessionScore


class SessionContext:
    """Everything the pipeline holds for one live session.

    Created at session start and discarded once the session is completed and
    no analysis work is left. ``lock`` serializes captures, transitions and
    result commits; ``changed`` is signalled whenever in-flight work resolves.
    """

    def __init__(self, lifecycle: SessionLifecycle, accumulator: CaptureAccumulator):
        self.lifecycle = lifecycle
        self.accumulator = accumulator
        self.lock = threading.RLock()
        self.changed = threading.Condition(self.lock)
        self.cancel = threading.Event()
        self.in_flight: Optional[Future] = None
        self.deferred = False
        self.has_fired = False

    @property
    def session(self) -> Session:
        return self.lifecycle.session

    def snapshot(self) -> Session:
        return dataclasses.replace(self.session, active_seconds=self.lifecycle.active_seconds())


class WorkSessionService:
    def __init__(
        self,
        adapter: InferenceAdapter,
        log,
        *,
        store: Optional[ReportStore] = None,
        goals: Optional[GoalSource] = None,
        trigger_settings: Optional[TriggerSettings] = None,
        scoring_settings: Optional[ScoringSettings] = None,
        pipeline_settings: Optional[PipelineSettings] = None,
        clock: Clock = utc_now,
        executor: Optional[Executor] = None,
    ):
        self._adapter = adapter
        self._logger = log
        self._store = store
        self._goals = goals
        self._trigger_settings = trigger_settings or TriggerSettings()
        self._pipeline_settings = pipeline_settings or PipelineSettings()
        self._reconciler = ScoreReconciler(scoring_settings)
        self._validator = ResponseValidator(log)
        self._clock = clock
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._pipeline_settings.max_workers, thread_name_prefix="analysis"
        )
        self._registry_lock = threading.Lock()
        self._sessions: Dict[str, SessionContext] = {}
        self._by_owner: Dict[str, str] = {}
        self._finished: Dict[str, Session] = {}

    @classmethod
    def from_settings(cls, settings: AppSettings, adapter: InferenceAdapter, log, **kwargs) -> "WorkSessionService":
        return cls(
            adapter,
            log,
            trigger_settings=settings.trigger,
            scoring_settings=settings.scoring,
            pipeline_settings=settings.pipeline,
            **kwargs,
        )

    @property
    def backend(self) -> str:
        return getattr(self._adapter, "name", type(self._adapter).__name__)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, owner_id: str, goal: str) -> Session:
        goal = (goal or "").strip()
        if not goal:
            raise ValueError("A session goal is required")

        with self._registry_lock:
            existing = self._by_owner.get(owner_id)
            if existing is not None:
                ctx = self._sessions.get(existing)
                if ctx is not None and ctx.lifecycle.status is not SessionStatus.COMPLETED:
                    raise InvalidState(f"Owner {owner_id} already has session {existing} ({ctx.lifecycle.status.value})")

            lifecycle = SessionLifecycle(uuid.uuid4().hex, owner_id, clock=self._clock)
            ctx = SessionContext(lifecycle, CaptureAccumulator(lifecycle, clock=self._clock))
            lifecycle.add_listener(lambda session, previous, current: self._on_transition(ctx, previous, current))
            with ctx.lock:
                lifecycle.start(goal)
                snapshot = ctx.snapshot()
            self._sessions[snapshot.id] = ctx
            self._by_owner[owner_id] = snapshot.id

        self._logger.info("Session started: %s owner=%s goal=%s", snapshot.id, owner_id, goal)
        self._persist_session(snapshot)
        return snapshot

    def pause_session(self, session_id: str, owner_id: Optional[str] = None) -> Session:
        ctx = self._get(session_id, owner_id)
        with ctx.lock:
            ctx.lifecycle.pause()
            snapshot = ctx.snapshot()
        self._persist_session(snapshot)
        return snapshot

    def resume_session(self, session_id: str, owner_id: Optional[str] = None) -> Session:
        ctx = self._get(session_id, owner_id)
        with ctx.lock:
            ctx.lifecycle.resume()
            snapshot = ctx.snapshot()
        self._persist_session(snapshot)
        return snapshot

    def stop_session(
        self, session_id: str, owner_id: Optional[str] = None, timeout: Optional[float] = None
    ) -> Session:
        """Complete the session, waiting a bounded time for its closing analysis.

        If in-flight or deferred work has not resolved within the timeout, the
        session stays completed with whatever score it already had and any
        call not yet in flight is cancelled.
        """
        ctx = self._get(session_id, owner_id)
        with ctx.lock:
            ctx.lifecycle.stop()
        self._persist_session(ctx.snapshot())

        timeout = self._pipeline_settings.stop_timeout_seconds if timeout is None else timeout
        if not self._await_idle(ctx, timeout):
            self._logger.warning(
                "Analysis for session %s did not finish within %.1fs of stop; keeping prior score", session_id, timeout
            )
            ctx.cancel.set()
            with ctx.lock:
                if ctx.in_flight is not None:
                    ctx.in_flight.cancel()

        with ctx.lock:
            snapshot = ctx.snapshot()
            self._discard_if_done(ctx)
        self._logger.info(
            "Session stopped: %s active=%.1fmin captures=%s score=%s",
            session_id,
            snapshot.active_seconds / 60.0,
            ctx.accumulator.total_count(),
            snapshot.latest_score,
        )
        return snapshot

    def get_session(self, session_id: str, owner_id: Optional[str] = None) -> Session:
        with self._registry_lock:
            ctx = self._sessions.get(session_id)
            finished = self._finished.get(session_id)
        if ctx is None and finished is not None:
            if owner_id is not None and finished.owner_id != owner_id:
                raise SessionNotFound(f"Session {session_id} not found")
            return finished
        if ctx is not None:
            if owner_id is not None and ctx.session.owner_id != owner_id:
                raise SessionNotFound(f"Session {session_id} not found")
            with ctx.lock:
                return ctx.snapshot()
        if self._store is not None:
            try:
                stored = self._store.fetch_session(session_id)
            except PersistenceError as exc:
                self._logger.warning("Could not load session %s from store: %s", session_id, exc)
                stored = None
            if stored is not None and (owner_id is None or stored.owner_id == owner_id):
                return stored
        raise SessionNotFound(f"Session {session_id} not found")

    def capture_stats(self, session_id: str) -> dict[str, object]:
        with self._registry_lock:
            ctx = self._sessions.get(session_id)
        if ctx is None:
            return {"total": None, "sinceLastAnalysis": None, "analysisInFlight": False}
        with ctx.lock:
            return {
                "total": ctx.accumulator.total_count(),
                "sinceLastAnalysis": ctx.accumulator.count_since_last_analysis(),
                "analysisInFlight": ctx.in_flight is not None,
            }

    # ------------------------------------------------------------------
    # Capture ingress and analysis
    # ------------------------------------------------------------------

    def on_capture(
        self,
        session_id: str,
        timestamp: datetime,
        origin: CaptureOrigin | str,
        image: bytes = b"",
        *,
        window_title: str = "",
        application: str = "",
    ) -> Capture:
        ctx = self._get(session_id, completed_error=WrongSession)
        with ctx.lock:
            capture = ctx.accumulator.append(
                session_id, timestamp, origin, image, window_title=window_title, application=application
            )
            self._logger.debug(
                "Capture %s accepted for session %s (origin=%s, since_last=%s)",
                capture.sequence,
                session_id,
                capture.origin.value,
                ctx.accumulator.count_since_last_analysis(),
            )
            self._evaluate(ctx)

        if self._store is not None:
            try:
                self._store.save_capture(capture)
            except PersistenceError as exc:
                self._logger.warning("Failed to persist capture %s: %s", capture.id, exc)
        return capture

    def analyze_captures(
        self,
        session_id: str,
        images: Sequence[bytes],
        time_range: str = "current session",
        owner_id: Optional[str] = None,
    ) -> AnalysisOutcome:
        """Analyse caller-supplied images right away.

        Shares the single-flight slot with triggered passes: waits for any
        in-flight call first. The accumulator watermark is not touched since
        these images are not part of the session's capture log.
        """
        if not images:
            raise ValueError("At least one capture is required")
        ctx = self._get(session_id, owner_id)
        now = self._clock()
        batch = [
            Capture(
                id=uuid.uuid4().hex,
                session_id=session_id,
                sequence=index,
                captured_at=now,
                origin=CaptureOrigin.TIMER,
                image=image,
            )
            for index, image in enumerate(images)
        ]

        deadline = time.monotonic() + self._pipeline_settings.stop_timeout_seconds
        with ctx.changed:
            while ctx.in_flight is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise UpstreamUnavailable(0, TimeoutError("Another analysis for this session is still running"))
                ctx.changed.wait(remaining)
            future = self._submit(ctx, batch, AnalysisPass.FULL, time_range, through_sequence=None)
        return future.result()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(
        self, session_id: str, owner_id: Optional[str] = None, completed_error: type = InvalidState
    ) -> SessionContext:
        """Return the live context, raising ``completed_error`` for a session that has already ended."""
        with self._registry_lock:
            ctx = self._sessions.get(session_id)
            finished = self._finished.get(session_id)
        if ctx is None and finished is not None and (owner_id is None or finished.owner_id == owner_id):
            raise completed_error(f"Session {session_id} is completed")
        if ctx is None or (owner_id is not None and ctx.session.owner_id != owner_id):
            raise SessionNotFound(f"Session {session_id} not found")
        return ctx

    def _on_transition(self, ctx: SessionContext, previous: SessionStatus, current: SessionStatus) -> None:
        self._logger.info("Session %s: %s -> %s", ctx.session.id, previous.value, current.value)
        self._evaluate(ctx)

    def _evaluate(self, ctx: SessionContext) -> None:
        """Fire an analysis pass if the trigger says so. Caller holds ``ctx.lock``."""
        if ctx.in_flight is not None:
            ctx.deferred = True
            self._logger.debug("Analysis in flight for session %s; re-evaluating when it resolves", ctx.session.id)
            return
        if ctx.cancel.is_set():
            return

        accumulator = ctx.accumulator
        decision = evaluate(
            accumulator.session_age_seconds(),
            accumulator.total_count(),
            accumulator.count_since_last_analysis(),
            ctx.lifecycle.status,
            ctx.has_fired,
            self._trigger_settings,
        )
        if decision is None:
            return

        batch = accumulator.pending()
        self._logger.info(
            "Firing %s analysis for session %s: %s", decision.pass_kind.value, ctx.session.id, decision.reason
        )
        ctx.has_fired = True
        self._submit(ctx, batch, decision.pass_kind, decision.time_range, through_sequence=batch[-1].sequence)

    def _submit(
        self,
        ctx: SessionContext,
        batch: List[Capture],
        pass_kind: AnalysisPass,
        time_range: str,
        through_sequence: Optional[int],
    ) -> Future:
        snapshot = ctx.snapshot()
        total = ctx.accumulator.total_count()
        future: Future = Future()
        ctx.in_flight = future

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                outcome = self._run_pass(ctx, snapshot, batch, pass_kind, time_range, total, through_sequence)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(outcome)

        future.add_done_callback(lambda done: self._on_pass_done(ctx, done))
        self._executor.submit(run)
        return future

    def _run_pass(
        self,
        ctx: SessionContext,
        snapshot: Session,
        batch: List[Capture],
        pass_kind: AnalysisPass,
        time_range: str,
        total_captures: int,
        through_sequence: Optional[int],
    ) -> AnalysisOutcome:
        if ctx.cancel.is_set():
            raise AnalysisCancelled(f"Analysis for session {snapshot.id} cancelled before start")

        goals = snapshot_goals(self._goals, snapshot.owner_id, self._logger)
        context = build_context(goals, snapshot, total_captures, time_range, pass_kind)
        raw = self._adapter.analyze(context, batch, cancel=ctx.cancel)
        result = self._validator.validate(raw, context, capture_count=len(batch))
        return self._commit(ctx, result, through_sequence)

    def _commit(self, ctx: SessionContext, result: AnalysisResult, through_sequence: Optional[int]) -> AnalysisOutcome:
        with ctx.lock:
            score = self._reconciler.reconcile(ctx.snapshot(), result)
            self._reconciler.merge(ctx.session, score)
            if through_sequence is not None:
                ctx.accumulator.mark_analyzed(through_sequence)
            snapshot = ctx.snapshot()

        self._logger.info(
            "Analysis %s committed for session %s: productivity=%.1f focus=%.1f redacted=%s",
            result.analysis_id,
            snapshot.id,
            score.productivity_score,
            score.focus_score,
            result.redacted_sensitive_data,
        )
        if self._store is not None:
            self._try_persist("analysis", lambda: self._store.save_analysis(snapshot.id, result))
            self._try_persist("score", lambda: self._store.save_score(snapshot.id, score))
            self._try_persist("session", lambda: self._store.save_session(snapshot))
        return AnalysisOutcome(result=result, score=score)

    def _on_pass_done(self, ctx: SessionContext, future: Future) -> None:
        session_id = ctx.session.id
        with ctx.lock:
            if ctx.in_flight is future:
                ctx.in_flight = None

            if future.cancelled():
                self._logger.info("Queued analysis for session %s was cancelled", session_id)
            else:
                exc = future.exception()
                if isinstance(exc, WorklensError) and exc.retryable:
                    self._logger.warning(
                        "Analysis for session %s failed (%s): %s; retrying on next qualifying event",
                        session_id,
                        type(exc).__name__,
                        exc,
                    )
                elif isinstance(exc, WorklensError):
                    self._logger.error("Analysis for session %s rejected (%s): %s", session_id, type(exc).__name__, exc)
                elif exc is not None:
                    self._logger.error("Analysis for session %s crashed: %s", session_id, exc, exc_info=exc)

            if ctx.deferred:
                ctx.deferred = False
                self._evaluate(ctx)
            ctx.changed.notify_all()
            if ctx.in_flight is None and ctx.cancel.is_set():
                self._discard_if_done(ctx)

    def _await_idle(self, ctx: SessionContext, timeout: float) -> bool:
        deadline = time.monotonic() + max(0.0, timeout)
        with ctx.changed:
            while ctx.in_flight is not None or ctx.deferred:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                ctx.changed.wait(remaining)
        return True

    def _discard_if_done(self, ctx: SessionContext) -> None:
        if ctx.lifecycle.status is not SessionStatus.COMPLETED or ctx.in_flight is not None:
            return
        session = ctx.snapshot()
        with self._registry_lock:
            self._sessions.pop(session.id, None)
            self._finished[session.id] = session
            if self._by_owner.get(session.owner_id) == session.id:
                del self._by_owner[session.owner_id]

    def _persist_session(self, session: Session) -> None:
        if self._store is not None:
            self._try_persist("session", lambda: self._store.save_session(session))

    def _try_persist(self, what: str, action) -> None:
        try:
            action()
        except PersistenceError as exc:
            self._logger.warning("Failed to persist %s (non-fatal): %s", what, exc)
