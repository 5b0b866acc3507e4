from __future__ import annotations

import json
import math
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from .errors import MalformedResponse
from .models import (
    AnalysisContext,
    AnalysisResult,
    AutomationSuggestions,
    BlockerAnalysis,
    CommunicationInsights,
    GoalAlignment,
    NextSteps,
    RawResponse,
    RecognitionAnalysis,
    TimeBreakdown,
    WorkSummary,
)
from .redaction import redact_tree

REQUIRED_SECTIONS = (
    "summary",
    "goalAlignment",
    "blockers",
    "recognition",
    "automation",
    "communication",
    "nextSteps",
)

# Raw payloads are logged for diagnosis; cap what goes into the log line.
_RAW_LOG_LIMIT = 2000


class ResponseValidator:
    def __init__(self, log):
        self._logger = log

    def validate(self, raw: RawResponse, context: AnalysisContext, capture_count: int | None = None) -> AnalysisResult:
        try:
            payload = parse_payload(raw.text)
            _check_sections(payload)
        except MalformedResponse as exc:
            self._logger.warning(
                "Malformed analysis response for session %s: %s. Raw payload: %s",
                context.session_id,
                exc,
                raw.text[:_RAW_LOG_LIMIT],
            )
            raise

        payload, hits = redact_tree(payload)
        if hits:
            self._logger.warning(
                "Redacted %s credential-like value(s) from analysis for session %s", hits, context.session_id
            )
        redacted = hits > 0 or _as_bool(payload.get("redactedSensitiveData"))

        return _build_result(
            payload,
            session_id=context.session_id,
            capture_count=capture_count if capture_count is not None else context.capture_count,
            redacted=redacted,
            model=raw.model,
            processing_ms=raw.elapsed_ms,
        )


def strip_code_fences(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if "```" in cleaned:
            cleaned = cleaned.rsplit("```", 1)[0]
    return cleaned.strip()


def parse_payload(text: str) -> dict[str, Any]:
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise MalformedResponse("Empty analysis response", raw=text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        # Salvage the outermost JSON object when the model adds prose around it.
        match = re.search(r"\{[\s\S]*\}", cleaned)
        if not match:
            raise MalformedResponse("Analysis response is not JSON", raw=text) from None
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise MalformedResponse(f"Analysis response is not valid JSON: {exc}", raw=text) from exc
    if not isinstance(payload, dict):
        raise MalformedResponse("Analysis response is not a JSON object", raw=text)
    return payload


def _check_sections(payload: dict[str, Any]) -> None:
    missing = [name for name in REQUIRED_SECTIONS if name not in payload]
    if missing:
        raise MalformedResponse(f"Analysis response missing section(s): {', '.join(missing)}")
    wrong = [name for name in REQUIRED_SECTIONS if not isinstance(payload[name], dict)]
    if wrong:
        raise MalformedResponse(f"Analysis section(s) are not objects: {', '.join(wrong)}")


def _build_result(
    payload: dict[str, Any],
    *,
    session_id: str,
    capture_count: int,
    redacted: bool,
    model: str,
    processing_ms: int,
) -> AnalysisResult:
    summary = payload["summary"]
    breakdown = summary.get("timeBreakdown") if isinstance(summary.get("timeBreakdown"), dict) else {}
    alignment = payload["goalAlignment"]
    blockers = payload["blockers"]
    recognition = payload["recognition"]
    automation = payload["automation"]
    communication = payload["communication"]
    next_steps = payload["nextSteps"]

    return AnalysisResult(
        analysis_id=uuid.uuid4().hex,
        session_id=session_id,
        created_at=datetime.now(tz=timezone.utc),
        capture_count=capture_count,
        summary=WorkSummary(
            report_ready_summary=_as_str(summary.get("reportReadySummary")),
            work_completed=_coerce_str_list(summary.get("workCompleted")),
            time_breakdown=TimeBreakdown(
                coding=_as_minutes(breakdown.get("coding")),
                meetings=_as_minutes(breakdown.get("meetings")),
                communication=_as_minutes(breakdown.get("communication")),
                research=_as_minutes(breakdown.get("research")),
                debugging=_as_minutes(breakdown.get("debugging")),
                design=_as_minutes(breakdown.get("design")),
                documentation=_as_minutes(breakdown.get("documentation")),
                context_switching=_as_minutes(breakdown.get("contextSwitching")),
            ),
        ),
        goal_alignment=GoalAlignment(
            personal_micro_alignment=_as_str(alignment.get("personalMicroAlignment")),
            personal_macro_alignment=_as_str(alignment.get("personalMacroAlignment")),
            team_micro_alignment=_as_str(alignment.get("teamMicroAlignment")),
            team_macro_alignment=_as_str(alignment.get("teamMacroAlignment")),
            alignment_score=_as_score(alignment.get("alignmentScore")),
            misalignments=_coerce_str_list(alignment.get("misalignments")),
        ),
        blockers=BlockerAnalysis(
            technical=_coerce_str_list(blockers.get("technical")),
            dependency=_coerce_str_list(blockers.get("dependency")),
            process=_coerce_str_list(blockers.get("process")),
            recommended_actions=_coerce_str_list(blockers.get("recommendedActions")),
            escalation_needed=_as_bool(blockers.get("escalationNeeded")),
            escalation_reason=_as_str(blockers.get("escalationReason")),
        ),
        recognition=RecognitionAnalysis(
            accomplishments=_coerce_str_list(recognition.get("accomplishments")),
            invisible_work=_coerce_str_list(recognition.get("invisibleWork")),
            team_impact=_as_str(recognition.get("teamImpact")),
            effort_highlight=_as_str(recognition.get("effortHighlight")),
        ),
        automation=AutomationSuggestions(
            patterns=_coerce_str_list(automation.get("patterns")),
            suggestions=_coerce_str_list(automation.get("suggestions")),
            time_savings_potential=_as_str(automation.get("timeSavingsPotential")),
        ),
        communication=CommunicationInsights(
            should_share=_coerce_str_list(communication.get("shouldShare")),
            affected_stakeholders=_coerce_str_list(communication.get("affectedStakeholders")),
            gaps_detected=_coerce_str_list(communication.get("gapsDetected")),
            suggested_message=_as_str(communication.get("suggestedMessage")),
        ),
        next_steps=NextSteps(
            immediate=_coerce_str_list(next_steps.get("immediate")),
            short_term=_coerce_str_list(next_steps.get("shortTerm")),
            conversations=_coerce_str_list(next_steps.get("conversations")),
            priority_recommendation=_as_str(next_steps.get("priorityRecommendation")),
        ),
        applications=_coerce_str_list(payload.get("applications")),
        detected_urls=_coerce_str_list(payload.get("detectedUrls")),
        redacted_sensitive_data=redacted,
        model=model,
        processing_ms=processing_ms,
    )


def _coerce_str_list(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return [str(value).strip()] if str(value).strip() else []


def _as_str(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_minutes(value) -> float:
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(minutes) or minutes < 0:
        return 0.0
    return minutes


def _as_score(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score):
        return None
    return min(100.0, max(0.0, score))
