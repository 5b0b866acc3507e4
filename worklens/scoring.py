from __future__ import annotations

from .config import ScoringSettings
from .models import AnalysisResult, Session, SessionScore, TimeBreakdown

# Categories that count as focused, deep work.
FOCUSED_CATEGORIES = ("coding", "research", "debugging", "design", "documentation")

NEUTRAL_FOCUS_SCORE = 7.0
NEUTRAL_FOCUS_RATIO = 0.5
MAX_SCORE = 10.0


class ScoreReconciler:
    """Derive productivity and focus scores from a validated analysis.

    Scores are on a 0-10 scale rounded to one decimal:

    * focus = 10 * (1 - contextSwitching / categorized minutes), or 7.0 when
      the model reported no categorized minutes.
    * productivity = 10 * focused_ratio * (0.5 + 0.5 * duration_credit)
      + alignment bonus, clamped to 0-10. ``duration_credit`` grows linearly
      with active minutes up to ``full_credit_minutes``; the bonus applies when
      the alignment score is present and above the configured threshold.

    Every input is taken from the session and result passed in, so the same
    pair always produces the same score.
    """

    def __init__(self, settings: ScoringSettings | None = None):
        self._settings = settings or ScoringSettings()

    def reconcile(self, session: Session, result: AnalysisResult) -> SessionScore:
        breakdown = result.summary.time_breakdown
        focused_ratio = _focused_ratio(breakdown)

        duration_credit = 1.0
        if self._settings.full_credit_minutes > 0:
            duration_credit = min(1.0, (session.active_seconds / 60.0) / self._settings.full_credit_minutes)

        productivity = MAX_SCORE * focused_ratio * (0.5 + 0.5 * duration_credit)
        alignment = result.goal_alignment.alignment_score
        if alignment is not None and alignment > self._settings.alignment_bonus_threshold:
            productivity += self._settings.alignment_bonus

        return SessionScore(
            productivity_score=_clamp(productivity),
            focus_score=_clamp(_focus_score(breakdown)),
            analysis_id=result.analysis_id,
        )

    def merge(self, session: Session, score: SessionScore) -> bool:
        """Write ``score`` into the session record; False when it was already there."""
        if session.latest_score == score and session.latest_analysis_id == score.analysis_id:
            return False
        session.latest_score = score
        session.latest_analysis_id = score.analysis_id
        return True


def _focused_ratio(breakdown: TimeBreakdown) -> float:
    total = breakdown.total()
    if total <= 0:
        return NEUTRAL_FOCUS_RATIO
    focused = sum(getattr(breakdown, name) for name in FOCUSED_CATEGORIES)
    return focused / total


def _focus_score(breakdown: TimeBreakdown) -> float:
    total = breakdown.total()
    if total <= 0:
        return NEUTRAL_FOCUS_SCORE
    return MAX_SCORE * max(0.0, 1.0 - breakdown.context_switching / total)


def _clamp(value: float) -> float:
    return round(min(MAX_SCORE, max(0.0, value)), 1)
