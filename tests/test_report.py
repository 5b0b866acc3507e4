"""Tests for report rendering and the summarizer export."""

import json

from conftest import T0, payload_text
from summarizer import to_dict, write_report
from worklens.models import AnalysisContext, GoalHierarchy, RawResponse, Session, SessionScore, SessionStatus
from worklens.report import analysis_from_dict, analysis_to_dict, combined_breakdown, render_markdown
from worklens.validator import ResponseValidator


def make_result(log, **overrides):
    context = AnalysisContext(
        goals=GoalHierarchy(),
        session_id="s-1",
        session_goal="goal",
        session_started_at=T0,
        capture_count=5,
        time_range="x",
    )
    return ResponseValidator(log).validate(RawResponse(text=payload_text(**overrides)), context)


def completed_session():
    return Session(
        id="s-1",
        owner_id="alice",
        goal="Ship the trigger",
        started_at=T0,
        status=SessionStatus.COMPLETED,
        active_seconds=1800,
        ended_at=T0.replace(minute=30),
        latest_score=SessionScore(8.5, 8.8, "a-1"),
        latest_analysis_id="a-1",
    )


class TestSerialization:
    def test_camel_case_keys(self, log):
        data = analysis_to_dict(make_result(log))
        assert set(data) >= {"summary", "goalAlignment", "blockers", "nextSteps", "redactedSensitiveData"}
        assert data["summary"]["timeBreakdown"]["contextSwitching"] == 5

    def test_from_dict_inverts_to_dict(self, log):
        result = make_result(log)
        assert analysis_from_dict(json.loads(json.dumps(analysis_to_dict(result)))) == result

    def test_combined_breakdown_sums(self, log):
        total = combined_breakdown([make_result(log), make_result(log)])
        assert total.coding == 40
        assert total.total() == 80


class TestMarkdown:
    def test_sections(self, log):
        text = render_markdown(completed_session(), [make_result(log)])
        assert text.startswith("# Work session report: Ship the trigger")
        assert "Active time: **30.0 min**" in text
        assert "Productivity: **8.5/10**" in text
        assert "| coding | 20 | 50.0% |" in text
        assert "## Blockers" in text
        assert "Flaky CI job" in text
        assert "> Trigger tiers landed; please try them." in text
        assert "redacted" not in text

    def test_in_progress_and_empty(self):
        session = completed_session()
        session.status = SessionStatus.ACTIVE
        session.latest_score = None
        text = render_markdown(session, [])
        assert "still in progress" in text
        assert "(no analyses)" in text
        assert "(no data)" in text

    def test_redaction_note(self, log):
        text = render_markdown(completed_session(), [make_result(log, redactedSensitiveData=True)])
        assert "Sensitive data was detected and redacted" in text


class TestSummarizerExport:
    def test_writes_markdown_and_json(self, store, log, tmp_path):
        session = completed_session()
        store.save_session(session)
        store.save_score("s-1", session.latest_score)
        store.save_analysis("s-1", make_result(log))

        markdown_path = write_report(store, "s-1", tmp_path / "reports")

        assert markdown_path.name == "session-report-20250303-0900-s-1.md"
        assert "Ship the trigger" in markdown_path.read_text(encoding="utf-8")
        data = json.loads(markdown_path.with_suffix(".json").read_text(encoding="utf-8"))
        assert data["statistics"]["analyses"] == 1
        assert data["statistics"]["blockers"] == 1
        assert data["session"]["score"]["productivityScore"] == 8.5

    def test_statistics(self, log):
        stats = to_dict(completed_session(), [make_result(log)], capture_count=7)["statistics"]
        assert stats["captures"] == 7
        assert stats["active_minutes"] == 30.0
        assert stats["focused_share"] == 0.75
        assert stats["redacted"] is False
