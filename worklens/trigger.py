from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import TriggerSettings
from .models import AnalysisPass, SessionStatus

DEFAULT_TRIGGER_SETTINGS = TriggerSettings()


@dataclass(frozen=True)
class TriggerDecision:
    pass_kind: AnalysisPass
    reason: str
    time_range: str


def threshold_for(total_captures: int, settings: TriggerSettings = DEFAULT_TRIGGER_SETTINGS) -> int:
    """Captures-since-last-analysis needed before a partial pass fires."""
    if total_captures <= settings.small_tier_max_captures:
        return settings.small_tier_threshold
    if total_captures <= settings.medium_tier_max_captures:
        return settings.medium_tier_threshold
    return settings.large_tier_threshold


def evaluate(
    session_age_seconds: float,
    total_captures: int,
    since_last: int,
    status: SessionStatus,
    has_fired: bool,
    settings: TriggerSettings = DEFAULT_TRIGGER_SETTINGS,
) -> Optional[TriggerDecision]:
    """Decide whether an analysis pass should run now.

    Active sessions fire a partial pass once the tier threshold is reached.
    Completed sessions get a forced minimal pass when nothing ever fired, or a
    full closing pass over whatever is still unanalysed.
    """
    if status is SessionStatus.ACTIVE:
        threshold = threshold_for(total_captures, settings)
        if since_last >= threshold:
            return TriggerDecision(
                pass_kind=AnalysisPass.PARTIAL,
                reason=f"{since_last} new captures (tier threshold {threshold} at {total_captures} total)",
                time_range=_recent_label(since_last, session_age_seconds),
            )
        return None

    if status is SessionStatus.COMPLETED:
        if not has_fired:
            if total_captures >= settings.minimal_pass_min_captures:
                return TriggerDecision(
                    pass_kind=AnalysisPass.MINIMAL,
                    reason=f"session completed with {total_captures} captures and no prior analysis",
                    time_range=_session_label(session_age_seconds),
                )
            return None
        if since_last > 0:
            return TriggerDecision(
                pass_kind=AnalysisPass.FULL,
                reason=f"session completed with {since_last} unanalysed captures",
                time_range=_session_label(session_age_seconds),
            )
    return None


def _recent_label(count: int, age_seconds: float) -> str:
    return f"last {count} captures ({_minutes(age_seconds)} min into session)"


def _session_label(age_seconds: float) -> str:
    return f"full session ({_minutes(age_seconds)} min)"


def _minutes(seconds: float) -> int:
    return int(round(seconds / 60.0))
