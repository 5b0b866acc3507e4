from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol, Sequence

from .config import AppSettings
from .models import AnalysisContext, Capture, RawResponse

PROMPT = """
You are WorkLens, an analysis engine that brings clarity, recognition and alignment to knowledge work.
You receive a sequence of desktop screenshots from one tracked work session plus the context below.
Describe observable work only. Never include passwords, API keys, tokens, credentials or personal data;
if you see any, leave them out and set "redactedSensitiveData" to true.

Respond strictly as a single JSON object (no markdown) with exactly these keys:
{
  "summary": {"reportReadySummary": str, "workCompleted": [str],
              "timeBreakdown": {"coding": int, "meetings": int, "communication": int, "research": int,
                                "debugging": int, "design": int, "documentation": int, "contextSwitching": int}},
  "goalAlignment": {"personalMicroAlignment": str, "personalMacroAlignment": str,
                    "teamMicroAlignment": str, "teamMacroAlignment": str,
                    "alignmentScore": int (0-100), "misalignments": [str]},
  "blockers": {"technical": [str], "dependency": [str], "process": [str],
               "recommendedActions": [str], "escalationNeeded": bool, "escalationReason": str},
  "recognition": {"accomplishments": [str], "invisibleWork": [str], "teamImpact": str, "effortHighlight": str},
  "automation": {"patterns": [str], "suggestions": [str], "timeSavingsPotential": str},
  "communication": {"shouldShare": [str], "affectedStakeholders": [str], "gapsDetected": [str],
                    "suggestedMessage": str},
  "nextSteps": {"immediate": [str], "shortTerm": [str], "conversations": [str], "priorityRecommendation": str},
  "applications": [str],
  "detectedUrls": [str],
  "redactedSensitiveData": bool
}
timeBreakdown values are minutes. Use empty strings or arrays when something cannot be observed.
""".strip()


class InferenceAdapter(Protocol):
    name: str

    def analyze(
        self,
        context: AnalysisContext,
        captures: Sequence[Capture],
        cancel: Optional[threading.Event] = None,
    ) -> RawResponse: ...


def build_prompt(context: AnalysisContext, captures: Sequence[Capture]) -> str:
    return f"{PROMPT}\n\n{describe_context(context, captures)}"


def describe_context(context: AnalysisContext, captures: Sequence[Capture]) -> str:
    goals = context.goals
    lines = [
        "## Context",
        f"- Session goal: {context.session_goal or 'None specified'}",
        f"- Personal micro goals: {_join(goals.personal_micro)}",
        f"- Personal macro goals: {_join(goals.personal_macro)}",
        f"- Team micro goals: {_join(goals.team_micro)}",
        f"- Team macro goals: {_join(goals.team_macro)}",
        f"- Session start: {context.session_started_at.isoformat()}",
        f"- Captures so far in session: {context.capture_count}",
        f"- Screenshots attached: {len(captures)}",
        f"- Time range: {context.time_range}",
        f"- Analysis pass: {context.pass_kind.value}",
        "",
        "## Screenshots (in order)",
    ]
    for index, capture in enumerate(captures, start=1):
        detail = f"{index}. {capture.captured_at.isoformat()} trigger={capture.origin.value}"
        if capture.window_title:
            detail += f" window={capture.window_title}"
        if capture.application:
            detail += f" app={capture.application}"
        lines.append(detail)
    return "\n".join(lines)


def _join(values: Sequence[str]) -> str:
    return ", ".join(values) if values else "None specified"


def create_adapter(settings: AppSettings, log: logging.Logger) -> InferenceAdapter:
    """Pick the inference backend once, from configuration."""
    backend = settings.analyzer.backend
    if backend == "local":
        from .local_llm_client import LocalLLMInferenceAdapter

        log.info("Analyzer backend: local (%s)", settings.local_llm.base_url)
        return LocalLLMInferenceAdapter(settings.local_llm, log)
    if backend == "gemini":
        from .gemini_client import GeminiInferenceAdapter

        log.info("Analyzer backend: gemini (%s)", settings.gemini.model)
        return GeminiInferenceAdapter(settings.gemini, log)
    raise RuntimeError(f"Unknown ANALYZER_BACKEND '{backend}' (expected 'gemini' or 'local')")
