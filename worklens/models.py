from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class SessionStatus(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class CaptureOrigin(str, Enum):
    TIMER = "timer"
    CLICK = "click"
    KEYPRESS = "keypress"
    WINDOW_CHANGE = "window-change"


class AnalysisPass(str, Enum):
    MINIMAL = "minimal"
    PARTIAL = "partial"
    FULL = "full"


@dataclass(frozen=True)
class SessionScore:
    productivity_score: float
    focus_score: float
    analysis_id: str


@dataclass
class Session:
    id: str
    owner_id: str
    goal: str
    started_at: datetime
    status: SessionStatus = SessionStatus.IDLE
    active_seconds: float = 0.0
    ended_at: Optional[datetime] = None
    latest_score: Optional[SessionScore] = None
    latest_analysis_id: Optional[str] = None


@dataclass(frozen=True)
class Capture:
    id: str
    session_id: str
    sequence: int
    captured_at: datetime
    origin: CaptureOrigin
    image: bytes = field(default=b"", repr=False)
    window_title: str = ""
    application: str = ""


@dataclass(frozen=True)
class GoalHierarchy:
    personal_micro: Tuple[str, ...] = ()
    personal_macro: Tuple[str, ...] = ()
    team_micro: Tuple[str, ...] = ()
    team_macro: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.personal_micro or self.personal_macro or self.team_micro or self.team_macro)


@dataclass(frozen=True)
class AnalysisContext:
    goals: GoalHierarchy
    session_id: str
    session_goal: str
    session_started_at: datetime
    capture_count: int
    time_range: str
    pass_kind: AnalysisPass = AnalysisPass.PARTIAL


@dataclass(frozen=True)
class RawResponse:
    text: str
    model: str = ""
    elapsed_ms: int = 0


# Minutes per activity category, as reported by the model.
@dataclass(frozen=True)
class TimeBreakdown:
    coding: float = 0.0
    meetings: float = 0.0
    communication: float = 0.0
    research: float = 0.0
    debugging: float = 0.0
    design: float = 0.0
    documentation: float = 0.0
    context_switching: float = 0.0

    def total(self) -> float:
        return (
            self.coding
            + self.meetings
            + self.communication
            + self.research
            + self.debugging
            + self.design
            + self.documentation
            + self.context_switching
        )


@dataclass(frozen=True)
class WorkSummary:
    report_ready_summary: str
    work_completed: List[str]
    time_breakdown: TimeBreakdown


@dataclass(frozen=True)
class GoalAlignment:
    personal_micro_alignment: str
    personal_macro_alignment: str
    team_micro_alignment: str
    team_macro_alignment: str
    alignment_score: Optional[float]
    misalignments: List[str]


@dataclass(frozen=True)
class BlockerAnalysis:
    technical: List[str]
    dependency: List[str]
    process: List[str]
    recommended_actions: List[str]
    escalation_needed: bool
    escalation_reason: str = ""

    def count(self) -> int:
        return len(self.technical) + len(self.dependency) + len(self.process)


@dataclass(frozen=True)
class RecognitionAnalysis:
    accomplishments: List[str]
    invisible_work: List[str]
    team_impact: str
    effort_highlight: str = ""


@dataclass(frozen=True)
class AutomationSuggestions:
    patterns: List[str]
    suggestions: List[str]
    time_savings_potential: str


@dataclass(frozen=True)
class CommunicationInsights:
    should_share: List[str]
    affected_stakeholders: List[str]
    gaps_detected: List[str]
    suggested_message: str


@dataclass(frozen=True)
class NextSteps:
    immediate: List[str]
    short_term: List[str]
    conversations: List[str]
    priority_recommendation: str


@dataclass(frozen=True)
class AnalysisResult:
    analysis_id: str
    session_id: str
    created_at: datetime
    capture_count: int
    summary: WorkSummary
    goal_alignment: GoalAlignment
    blockers: BlockerAnalysis
    recognition: RecognitionAnalysis
    automation: AutomationSuggestions
    communication: CommunicationInsights
    next_steps: NextSteps
    applications: List[str] = field(default_factory=list)
    detected_urls: List[str] = field(default_factory=list)
    redacted_sensitive_data: bool = False
    model: str = ""
    processing_ms: int = 0
