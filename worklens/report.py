from __future__ import annotations

from dataclasses import fields
from datetime import datetime
from typing import Any, Iterable, List, Optional

from .models import (
    AnalysisResult,
    AutomationSuggestions,
    BlockerAnalysis,
    CommunicationInsights,
    GoalAlignment,
    NextSteps,
    RecognitionAnalysis,
    Session,
    SessionScore,
    SessionStatus,
    TimeBreakdown,
    WorkSummary,
)

_BREAKDOWN_KEYS = {
    "coding": "coding",
    "meetings": "meetings",
    "communication": "communication",
    "research": "research",
    "debugging": "debugging",
    "design": "design",
    "documentation": "documentation",
    "context_switching": "contextSwitching",
}


def analysis_to_dict(result: AnalysisResult) -> dict[str, Any]:
    """Serialize a result using the same camelCase keys the model answers with."""
    breakdown = result.summary.time_breakdown
    return {
        "analysisId": result.analysis_id,
        "sessionId": result.session_id,
        "createdAt": result.created_at.isoformat(),
        "captureCount": result.capture_count,
        "summary": {
            "reportReadySummary": result.summary.report_ready_summary,
            "workCompleted": list(result.summary.work_completed),
            "timeBreakdown": {key: getattr(breakdown, attr) for attr, key in _BREAKDOWN_KEYS.items()},
        },
        "goalAlignment": {
            "personalMicroAlignment": result.goal_alignment.personal_micro_alignment,
            "personalMacroAlignment": result.goal_alignment.personal_macro_alignment,
            "teamMicroAlignment": result.goal_alignment.team_micro_alignment,
            "teamMacroAlignment": result.goal_alignment.team_macro_alignment,
            "alignmentScore": result.goal_alignment.alignment_score,
            "misalignments": list(result.goal_alignment.misalignments),
        },
        "blockers": {
            "technical": list(result.blockers.technical),
            "dependency": list(result.blockers.dependency),
            "process": list(result.blockers.process),
            "recommendedActions": list(result.blockers.recommended_actions),
            "escalationNeeded": result.blockers.escalation_needed,
            "escalationReason": result.blockers.escalation_reason,
        },
        "recognition": {
            "accomplishments": list(result.recognition.accomplishments),
            "invisibleWork": list(result.recognition.invisible_work),
            "teamImpact": result.recognition.team_impact,
            "effortHighlight": result.recognition.effort_highlight,
        },
        "automation": {
            "patterns": list(result.automation.patterns),
            "suggestions": list(result.automation.suggestions),
            "timeSavingsPotential": result.automation.time_savings_potential,
        },
        "communication": {
            "shouldShare": list(result.communication.should_share),
            "affectedStakeholders": list(result.communication.affected_stakeholders),
            "gapsDetected": list(result.communication.gaps_detected),
            "suggestedMessage": result.communication.suggested_message,
        },
        "nextSteps": {
            "immediate": list(result.next_steps.immediate),
            "shortTerm": list(result.next_steps.short_term),
            "conversations": list(result.next_steps.conversations),
            "priorityRecommendation": result.next_steps.priority_recommendation,
        },
        "applications": list(result.applications),
        "detectedUrls": list(result.detected_urls),
        "redactedSensitiveData": result.redacted_sensitive_data,
        "model": result.model,
        "processingMs": result.processing_ms,
    }


def analysis_from_dict(data: dict[str, Any]) -> AnalysisResult:
    """Inverse of ``analysis_to_dict`` for results read back from storage."""
    summary = data["summary"]
    breakdown = summary.get("timeBreakdown") or {}
    alignment = data["goalAlignment"]
    blockers = data["blockers"]
    recognition = data["recognition"]
    automation = data["automation"]
    communication = data["communication"]
    next_steps = data["nextSteps"]
    return AnalysisResult(
        analysis_id=data["analysisId"],
        session_id=data["sessionId"],
        created_at=datetime.fromisoformat(data["createdAt"]),
        capture_count=int(data.get("captureCount", 0)),
        summary=WorkSummary(
            report_ready_summary=summary.get("reportReadySummary", ""),
            work_completed=list(summary.get("workCompleted", [])),
            time_breakdown=TimeBreakdown(
                **{attr: float(breakdown.get(key, 0.0)) for attr, key in _BREAKDOWN_KEYS.items()}
            ),
        ),
        goal_alignment=GoalAlignment(
            personal_micro_alignment=alignment.get("personalMicroAlignment", ""),
            personal_macro_alignment=alignment.get("personalMacroAlignment", ""),
            team_micro_alignment=alignment.get("teamMicroAlignment", ""),
            team_macro_alignment=alignment.get("teamMacroAlignment", ""),
            alignment_score=alignment.get("alignmentScore"),
            misalignments=list(alignment.get("misalignments", [])),
        ),
        blockers=BlockerAnalysis(
            technical=list(blockers.get("technical", [])),
            dependency=list(blockers.get("dependency", [])),
            process=list(blockers.get("process", [])),
            recommended_actions=list(blockers.get("recommendedActions", [])),
            escalation_needed=bool(blockers.get("escalationNeeded", False)),
            escalation_reason=blockers.get("escalationReason", ""),
        ),
        recognition=RecognitionAnalysis(
            accomplishments=list(recognition.get("accomplishments", [])),
            invisible_work=list(recognition.get("invisibleWork", [])),
            team_impact=recognition.get("teamImpact", ""),
            effort_highlight=recognition.get("effortHighlight", ""),
        ),
        automation=AutomationSuggestions(
            patterns=list(automation.get("patterns", [])),
            suggestions=list(automation.get("suggestions", [])),
            time_savings_potential=automation.get("timeSavingsPotential", ""),
        ),
        communication=CommunicationInsights(
            should_share=list(communication.get("shouldShare", [])),
            affected_stakeholders=list(communication.get("affectedStakeholders", [])),
            gaps_detected=list(communication.get("gapsDetected", [])),
            suggested_message=communication.get("suggestedMessage", ""),
        ),
        next_steps=NextSteps(
            immediate=list(next_steps.get("immediate", [])),
            short_term=list(next_steps.get("shortTerm", [])),
            conversations=list(next_steps.get("conversations", [])),
            priority_recommendation=next_steps.get("priorityRecommendation", ""),
        ),
        applications=list(data.get("applications", [])),
        detected_urls=list(data.get("detectedUrls", [])),
        redacted_sensitive_data=bool(data.get("redactedSensitiveData", False)),
        model=data.get("model", ""),
        processing_ms=int(data.get("processingMs", 0)),
    )


def score_to_dict(score: Optional[SessionScore]) -> Optional[dict[str, Any]]:
    if score is None:
        return None
    return {
        "productivityScore": score.productivity_score,
        "focusScore": score.focus_score,
        "analysisId": score.analysis_id,
    }


def session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "sessionId": session.id,
        "ownerId": session.owner_id,
        "goal": session.goal,
        "status": session.status.value,
        "startedAt": session.started_at.isoformat(),
        "endedAt": session.ended_at.isoformat() if session.ended_at else None,
        "activeSeconds": round(session.active_seconds, 3),
        "latestAnalysisId": session.latest_analysis_id,
        "score": score_to_dict(session.latest_score),
    }


def combined_breakdown(results: Iterable[AnalysisResult]) -> TimeBreakdown:
    totals = {field.name: 0.0 for field in fields(TimeBreakdown)}
    for result in results:
        for name in totals:
            totals[name] += getattr(result.summary.time_breakdown, name)
    return TimeBreakdown(**totals)


def render_markdown(session: Session, results: List[AnalysisResult]) -> str:
    lines = [f"# Work session report: {session.goal or 'Untitled session'}", ""]
    lines.append(f"- Started: {session.started_at.strftime('%Y/%m/%d %H:%M')}")
    if session.ended_at:
        lines.append(f"- Ended: {session.ended_at.strftime('%Y/%m/%d %H:%M')}")
    lines.append(f"- Status: {session.status.value}")
    lines.append(f"- Active time: **{session.active_seconds / 60.0:.1f} min**")
    lines.append(f"- Analyses: {len(results)}")
    if session.latest_score:
        lines.append(
            f"- Productivity: **{session.latest_score.productivity_score:.1f}/10**, "
            f"focus: **{session.latest_score.focus_score:.1f}/10**"
        )
    if session.status is not SessionStatus.COMPLETED:
        lines.append("- _Session still in progress; figures may change._")

    breakdown = combined_breakdown(results)
    total_minutes = breakdown.total()
    lines.append("\n## Time by category")
    lines.append("| Category | Minutes | Share |")
    lines.append("| --- | ---: | ---: |")
    rows = sorted(
        ((key, getattr(breakdown, attr)) for attr, key in _BREAKDOWN_KEYS.items()),
        key=lambda item: item[1],
        reverse=True,
    )
    for key, minutes in rows:
        if minutes <= 0:
            continue
        lines.append(f"| {key} | {minutes:.0f} | {minutes / total_minutes * 100.0:.1f}% |")
    if total_minutes <= 0:
        lines.append("| (no data) | 0 | 0% |")

    lines.append("\n## Timeline\n")
    lines.append("| Time | Captures | Summary |")
    lines.append("| --- | ---: | --- |")
    for result in results:
        summary = result.summary.report_ready_summary.replace("|", "/") or "-"
        lines.append(f"| {result.created_at.strftime('%H:%M')} | {result.capture_count} | {summary} |")
    if not results:
        lines.append("| (no analyses) | 0 | - |")

    _section(lines, "Accomplishments", _collect(results, lambda r: r.recognition.accomplishments))
    _section(lines, "Invisible work", _collect(results, lambda r: r.recognition.invisible_work))
    blockers = _collect(results, lambda r: r.blockers.technical + r.blockers.dependency + r.blockers.process)
    _section(lines, "Blockers", blockers)
    if results:
        latest = results[-1]
        _section(lines, "Next steps", latest.next_steps.immediate + latest.next_steps.short_term)
        if latest.communication.suggested_message:
            lines.append("\n## Suggested update\n")
            lines.append(f"> {latest.communication.suggested_message}")

    if any(result.redacted_sensitive_data for result in results):
        lines.append("\n_Sensitive data was detected and redacted from this report._")
    return "\n".join(lines)


def _collect(results: Iterable[AnalysisResult], pick) -> list[str]:
    seen: list[str] = []
    for result in results:
        for item in pick(result):
            if item not in seen:
                seen.append(item)
    return seen


def _section(lines: list[str], title: str, items: list[str], limit: int = 8) -> None:
    if not items:
        return
    lines.append(f"\n## {title}\n")
    for item in items[:limit]:
        lines.append(f"- {item}")
