from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol

from .models import AnalysisContext, AnalysisPass, GoalHierarchy, Session


class GoalSource(Protocol):
    def get_goals(self, owner_id: str) -> Optional[GoalHierarchy]: ...


def snapshot_goals(source: Optional[GoalSource], owner_id: str, log: logging.Logger) -> GoalHierarchy:
    """Read the owner's goals, degrading to an empty hierarchy on any failure."""
    if source is None:
        return GoalHierarchy()
    try:
        goals = source.get_goals(owner_id)
    except Exception as exc:
        log.warning("Goal hierarchy unavailable for owner %s, analysing without goals: %s", owner_id, exc)
        return GoalHierarchy()
    if goals is None:
        log.info("No goal hierarchy for owner %s", owner_id)
        return GoalHierarchy()
    return goals


def build_context(
    goals: Optional[GoalHierarchy],
    session: Session,
    capture_count: int,
    time_range: str,
    pass_kind: AnalysisPass = AnalysisPass.PARTIAL,
) -> AnalysisContext:
    goals = goals or GoalHierarchy()
    return AnalysisContext(
        goals=GoalHierarchy(
            personal_micro=_titles(goals.personal_micro),
            personal_macro=_titles(goals.personal_macro),
            team_micro=_titles(goals.team_micro),
            team_macro=_titles(goals.team_macro),
        ),
        session_id=session.id,
        session_goal=session.goal,
        session_started_at=session.started_at,
        capture_count=capture_count,
        time_range=time_range or "current session",
        pass_kind=pass_kind,
    )


# Prompt space is limited; keep each goal list short and de-duplicated.
_MAX_GOALS_PER_LIST = 10
_MAX_GOAL_LENGTH = 200


def _titles(values: Iterable[str]) -> tuple[str, ...]:
    seen: list[str] = []
    for value in values or ():
        title = str(value).strip()[:_MAX_GOAL_LENGTH]
        if title and title not in seen:
            seen.append(title)
        if len(seen) >= _MAX_GOALS_PER_LIST:
            break
    return tuple(seen)
