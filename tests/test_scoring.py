"""Tests for score reconciliation."""

import dataclasses
import json

import pytest

from conftest import T0, valid_payload
from worklens.config import ScoringSettings
from worklens.models import AnalysisContext, GoalHierarchy, RawResponse, Session
from worklens.scoring import ScoreReconciler
from worklens.validator import ResponseValidator


def make_result(log, breakdown=None, alignment=80):
    payload = valid_payload()
    if breakdown is not None:
        payload["summary"]["timeBreakdown"] = breakdown
    payload["goalAlignment"]["alignmentScore"] = alignment
    context = AnalysisContext(
        goals=GoalHierarchy(),
        session_id="s-1",
        session_goal="goal",
        session_started_at=T0,
        capture_count=5,
        time_range="x",
    )
    return ResponseValidator(log).validate(RawResponse(text=json.dumps(payload)), context)


def make_session(active_minutes=30.0):
    return Session(id="s-1", owner_id="alice", goal="goal", started_at=T0, active_seconds=active_minutes * 60)


class TestReconcile:
    def test_focus_from_context_switching(self, log):
        result = make_result(log)
        score = ScoreReconciler().reconcile(make_session(), result)
        # 5 of 40 categorized minutes were context switching.
        assert score.focus_score == 8.8
        assert score.analysis_id == result.analysis_id

    def test_productivity_with_alignment_bonus(self, log):
        # focused = coding 20 + research 5 + debugging 5 = 30 of 40 -> 7.5, full duration credit, +1 bonus.
        score = ScoreReconciler().reconcile(make_session(30), make_result(log, alignment=80))
        assert score.productivity_score == 8.5

    def test_no_bonus_at_or_below_threshold(self, log):
        score = ScoreReconciler().reconcile(make_session(30), make_result(log, alignment=70))
        assert score.productivity_score == 7.5

    def test_no_bonus_without_alignment(self, log):
        score = ScoreReconciler().reconcile(make_session(30), make_result(log, alignment=None))
        assert score.productivity_score == 7.5

    def test_short_sessions_earn_partial_credit(self, log):
        # 5 of 25 minutes -> credit 0.2 -> 7.5 * 0.6 = 4.5, plus bonus.
        score = ScoreReconciler().reconcile(make_session(5), make_result(log))
        assert score.productivity_score == 5.5

    def test_neutral_when_no_minutes(self, log):
        empty = {key: 0 for key in valid_payload()["summary"]["timeBreakdown"]}
        score = ScoreReconciler().reconcile(make_session(30), make_result(log, breakdown=empty, alignment=None))
        assert score.focus_score == 7.0
        assert score.productivity_score == 5.0

    def test_scores_are_clamped(self, log):
        settings = ScoringSettings(alignment_bonus=5.0)
        breakdown = {"coding": 60, "contextSwitching": 0}
        score = ScoreReconciler(settings).reconcile(make_session(60), make_result(log, breakdown=breakdown))
        assert score.productivity_score == 10.0
        assert score.focus_score == 10.0

    def test_same_inputs_same_score(self, log):
        result = make_result(log)
        session = make_session(12)
        reconciler = ScoreReconciler()
        assert reconciler.reconcile(session, result) == reconciler.reconcile(dataclasses.replace(session), result)


class TestMerge:
    def test_merge_records_score(self, log):
        session = make_session()
        reconciler = ScoreReconciler()
        score = reconciler.reconcile(session, make_result(log))
        assert reconciler.merge(session, score) is True
        assert session.latest_score == score
        assert session.latest_analysis_id == score.analysis_id

    def test_merge_is_idempotent(self, log):
        session = make_session()
        reconciler = ScoreReconciler()
        result = make_result(log)
        first = reconciler.reconcile(session, result)
        reconciler.merge(session, first)
        second = reconciler.reconcile(session, result)
        assert reconciler.merge(session, second) is False
        assert session.latest_score == first

    @pytest.mark.parametrize("alignment", [0, 50, 100])
    def test_scores_stay_in_range(self, log, alignment):
        score = ScoreReconciler().reconcile(make_session(1), make_result(log, alignment=alignment))
        assert 0.0 <= score.productivity_score <= 10.0
        assert 0.0 <= score.focus_score <= 10.0
