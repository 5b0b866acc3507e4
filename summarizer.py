from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from pathlib import Path
from typing import List

from worklens.config import get_settings
from worklens.logging_utils import init_logger
from worklens.models import AnalysisResult, Session
from worklens.report import analysis_to_dict, combined_breakdown, render_markdown, session_to_dict
from worklens.scoring import FOCUSED_CATEGORIES
from worklens.storage import SqliteReportStore


def main() -> None:
    parser = argparse.ArgumentParser(description="Export a Worklens session report")
    parser.add_argument("--session", help="Session id (defaults to the most recent session)")
    parser.add_argument("--owner", help="Restrict the default lookup to this owner")
    parser.add_argument("--output", type=Path, default=None, help="Output folder (defaults to REPORT_OUTPUT_DIR)")
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("summarizer", settings.logging.directory, settings.logging.level)
    store = SqliteReportStore(settings.storage.db_path)

    session_id = args.session or store.latest_session_id(args.owner)
    if not session_id:
        logger.warning("No sessions recorded in %s", settings.storage.db_path)
        return

    try:
        markdown_path = write_report(store, session_id, args.output or settings.output.report_dir)
    except LookupError as exc:
        logger.warning("%s", exc)
        return
    logger.info("Session report saved to %s", markdown_path)


def write_report(store: SqliteReportStore, session_id: str, output_dir: Path) -> Path:
    """Write markdown and JSON reports for one session and return the markdown path."""
    session = store.fetch_session(session_id)
    if session is None:
        raise LookupError(f"Session {session_id} not found")
    results = store.fetch_analyses(session_id)

    output_dir.mkdir(parents=True, exist_ok=True)
    stamp = session.started_at.strftime("%Y%m%d-%H%M")
    markdown_path = output_dir / f"session-report-{stamp}-{session.id[:8]}.md"
    json_path = markdown_path.with_suffix(".json")

    markdown_path.write_text(render_markdown(session, results), encoding="utf-8")
    payload = to_dict(session, results, capture_count=store.capture_count(session_id))
    json_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return markdown_path


def to_dict(session: Session, results: List[AnalysisResult], capture_count: int = 0) -> dict:
    breakdown = combined_breakdown(results)
    total_minutes = breakdown.total()
    focused_minutes = sum(getattr(breakdown, name) for name in FOCUSED_CATEGORIES)
    return {
        "session": session_to_dict(session),
        "statistics": {
            "captures": capture_count,
            "analyses": len(results),
            "active_minutes": round(session.active_seconds / 60.0, 1),
            "categorized_minutes": round(total_minutes, 1),
            "focused_share": round(focused_minutes / total_minutes, 3) if total_minutes > 0 else None,
            "blockers": sum(result.blockers.count() for result in results),
            "escalations": sum(1 for result in results if result.blockers.escalation_needed),
            "redacted": any(result.redacted_sensitive_data for result in results),
        },
        "time_breakdown": asdict(breakdown),
        "analyses": [analysis_to_dict(result) for result in results],
    }


if __name__ == "__main__":
    main()
