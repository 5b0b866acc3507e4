from __future__ import annotations

import json
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Protocol

from .errors import PersistenceError
from .models import AnalysisResult, Capture, GoalHierarchy, Session, SessionScore, SessionStatus
from .report import analysis_from_dict, analysis_to_dict

GOAL_KINDS = ("personal_micro", "personal_macro", "team_micro", "team_macro")


class ReportStore(Protocol):
    def save_session(self, session: Session) -> None: ...

    def save_capture(self, capture: Capture) -> None: ...

    def save_analysis(self, session_id: str, result: AnalysisResult) -> None: ...

    def save_score(self, session_id: str, score: SessionScore) -> None: ...

    def fetch_session(self, session_id: str) -> Optional[Session]: ...

    def fetch_analyses(self, session_id: str) -> List[AnalysisResult]: ...


class SqliteReportStore:
    """SQLite-backed sessions, capture metadata, analyses, scores and goals.

    Image bytes are never written; only capture metadata is kept. Every
    ``sqlite3`` failure surfaces as ``PersistenceError``.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                with conn:
                    yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite operation failed on {self.db_path}: {exc}") from exc

    def _initialize(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    goal TEXT,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    active_seconds REAL NOT NULL DEFAULT 0,
                    ended_at TEXT,
                    latest_analysis_id TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS captures (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    captured_at TEXT NOT NULL,
                    origin TEXT NOT NULL,
                    window_title TEXT,
                    application TEXT,
                    UNIQUE (session_id, sequence),
                    FOREIGN KEY (session_id) REFERENCES sessions(id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS analyses (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    capture_count INTEGER,
                    redacted INTEGER NOT NULL DEFAULT 0,
                    payload TEXT NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES sessions(id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS scores (
                    session_id TEXT PRIMARY KEY,
                    analysis_id TEXT NOT NULL,
                    productivity_score REAL NOT NULL,
                    focus_score REAL NOT NULL,
                    FOREIGN KEY (session_id) REFERENCES sessions(id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS goals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    title TEXT NOT NULL
                )
                """
            )

    def save_session(self, session: Session) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO sessions (id, owner_id, goal, status, started_at, active_seconds, ended_at, latest_analysis_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.owner_id,
                    session.goal,
                    session.status.value,
                    session.started_at.isoformat(),
                    session.active_seconds,
                    session.ended_at.isoformat() if session.ended_at else None,
                    session.latest_analysis_id,
                ),
            )

    def save_capture(self, capture: Capture) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO captures (id, session_id, sequence, captured_at, origin, window_title, application)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    capture.id,
                    capture.session_id,
                    capture.sequence,
                    capture.captured_at.isoformat(),
                    capture.origin.value,
                    capture.window_title,
                    capture.application,
                ),
            )

    def save_analysis(self, session_id: str, result: AnalysisResult) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO analyses (id, session_id, created_at, capture_count, redacted, payload)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    result.analysis_id,
                    session_id,
                    result.created_at.isoformat(),
                    result.capture_count,
                    int(result.redacted_sensitive_data),
                    json.dumps(analysis_to_dict(result), ensure_ascii=False),
                ),
            )

    def save_score(self, session_id: str, score: SessionScore) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO scores (session_id, analysis_id, productivity_score, focus_score)
                VALUES (?, ?, ?, ?)
                """,
                (session_id, score.analysis_id, score.productivity_score, score.focus_score),
            )

    def fetch_session(self, session_id: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT s.id, s.owner_id, s.goal, s.status, s.started_at, s.active_seconds, s.ended_at,
                       s.latest_analysis_id, sc.analysis_id, sc.productivity_score, sc.focus_score
                FROM sessions s
                LEFT JOIN scores sc ON sc.session_id = s.id
                WHERE s.id = ?
                """,
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        score = None
        if row[8] is not None:
            score = SessionScore(productivity_score=row[9], focus_score=row[10], analysis_id=row[8])
        return Session(
            id=row[0],
            owner_id=row[1],
            goal=row[2] or "",
            status=SessionStatus(row[3]),
            started_at=datetime.fromisoformat(row[4]),
            active_seconds=float(row[5] or 0.0),
            ended_at=datetime.fromisoformat(row[6]) if row[6] else None,
            latest_analysis_id=row[7],
            latest_score=score,
        )

    def latest_session_id(self, owner_id: str | None = None) -> Optional[str]:
        query = "SELECT id FROM sessions"
        params: tuple = ()
        if owner_id:
            query += " WHERE owner_id = ?"
            params = (owner_id,)
        query += " ORDER BY started_at DESC LIMIT 1"
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return row[0] if row else None

    def fetch_analyses(self, session_id: str) -> List[AnalysisResult]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT payload FROM analyses WHERE session_id = ? ORDER BY created_at",
                (session_id,),
            ).fetchall()
        return [analysis_from_dict(json.loads(row[0])) for row in rows]

    def capture_count(self, session_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM captures WHERE session_id = ?", (session_id,)).fetchone()
        return int((row or [0])[0])

    def add_goal(self, owner_id: str, kind: str, title: str) -> None:
        if kind not in GOAL_KINDS:
            raise ValueError(f"Unknown goal kind '{kind}' (expected one of {', '.join(GOAL_KINDS)})")
        with self._connect() as conn:
            conn.execute("INSERT INTO goals (owner_id, kind, title) VALUES (?, ?, ?)", (owner_id, kind, title))

    def get_goals(self, owner_id: str) -> Optional[GoalHierarchy]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT kind, title FROM goals WHERE owner_id = ? ORDER BY id",
                (owner_id,),
            ).fetchall()
        if not rows:
            return None
        grouped: dict[str, list[str]] = {kind: [] for kind in GOAL_KINDS}
        for kind, title in rows:
            if kind in grouped:
                grouped[kind].append(title)
        return GoalHierarchy(**{kind: tuple(titles) for kind, titles in grouped.items()})
