"""
Shared fixtures: a manual clock, a scripted inference backend, an inline
executor and a factory for fully wired services.
"""

import json
import logging
import threading
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest

from worklens.config import PipelineSettings, ScoringSettings, TriggerSettings
from worklens.models import RawResponse
from worklens.service import WorkSessionService
from worklens.storage import SqliteReportStore

T0 = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


class ManualClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)
        return self.now


class InlineExecutor(Executor):
    """Runs submitted work on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


def valid_payload(**overrides: Any) -> dict:
    payload = {
        "summary": {
            "reportReadySummary": "Implemented the session trigger and reviewed a PR.",
            "workCompleted": ["Trigger tiers", "PR review"],
            "timeBreakdown": {
                "coding": 20,
                "meetings": 0,
                "communication": 5,
                "research": 5,
                "debugging": 5,
                "design": 0,
                "documentation": 0,
                "contextSwitching": 5,
            },
        },
        "goalAlignment": {
            "personalMicroAlignment": "On track",
            "personalMacroAlignment": "Supports the Q2 platform goal",
            "teamMicroAlignment": "Unblocks the sprint",
            "teamMacroAlignment": "Aligned",
            "alignmentScore": 80,
            "misalignments": [],
        },
        "blockers": {
            "technical": ["Flaky CI job"],
            "dependency": [],
            "process": [],
            "recommendedActions": ["Quarantine the flaky job"],
            "escalationNeeded": False,
            "escalationReason": "",
        },
        "recognition": {
            "accomplishments": ["Shipped trigger tiers"],
            "invisibleWork": ["Reviewed a teammate's PR"],
            "teamImpact": "Faster feedback",
            "effortHighlight": "Careful edge-case handling",
        },
        "automation": {"patterns": [], "suggestions": [], "timeSavingsPotential": ""},
        "communication": {
            "shouldShare": ["Trigger tiers are live"],
            "affectedStakeholders": ["Platform team"],
            "gapsDetected": [],
            "suggestedMessage": "Trigger tiers landed; please try them.",
        },
        "nextSteps": {
            "immediate": ["Fix the flaky job"],
            "shortTerm": ["Add dashboards"],
            "conversations": [],
            "priorityRecommendation": "CI first",
        },
        "applications": ["VS Code", "Chrome"],
        "detectedUrls": ["https://github.com/acme/worklens/pull/12"],
        "redactedSensitiveData": False,
    }
    for key, value in overrides.items():
        payload[key] = value
    return payload


def payload_text(**overrides: Any) -> str:
    return json.dumps(valid_payload(**overrides))


class FakeAdapter:
    """Scripted backend: each call consumes the next reply.

    A reply is response text, an exception to raise, or a callable taking
    ``(context, captures)``. When the script runs out the last reply repeats.
    Set ``gate`` to hold calls until the test releases them.
    """

    name = "fake"

    def __init__(self, *replies: Any):
        self.replies: List[Any] = list(replies) or [payload_text()]
        self.calls: List[tuple] = []
        self.cancel_events: List[Optional[threading.Event]] = []
        self.started = threading.Event()
        self.gate: Optional[threading.Event] = None

    def analyze(self, context, captures, cancel=None):
        self.calls.append((context, list(captures)))
        self.cancel_events.append(cancel)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(context, captures)
        return RawResponse(text=reply, model="fake-model", elapsed_ms=12)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def log():
    return logging.getLogger("worklens.tests")


@pytest.fixture
def store(tmp_path):
    return SqliteReportStore(tmp_path / "worklens.db")


@pytest.fixture
def make_service(clock, log, store):
    created: List[WorkSessionService] = []

    def factory(adapter=None, *, inline=True, stop_timeout=5.0, with_store=True, **kwargs):
        service = WorkSessionService(
            adapter or FakeAdapter(),
            log,
            store=kwargs.pop("store", store if with_store else None),
            goals=kwargs.pop("goals", store if with_store else None),
            trigger_settings=kwargs.pop("trigger_settings", TriggerSettings()),
            scoring_settings=kwargs.pop("scoring_settings", ScoringSettings()),
            pipeline_settings=PipelineSettings(stop_timeout_seconds=stop_timeout, max_workers=2),
            clock=clock,
            executor=InlineExecutor() if inline else None,
            **kwargs,
        )
        created.append(service)
        return service

    yield factory
    for service in created:
        service.shutdown(wait=False)
