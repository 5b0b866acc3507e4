from __future__ import annotations

import argparse
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Tuple

from summarizer import write_report
from worklens.config import get_settings
from worklens.inference import create_adapter
from worklens.logging_utils import init_logger
from worklens.models import CaptureOrigin
from worklens.service import WorkSessionService
from worklens.storage import SqliteReportStore

# Files written by the capture tool look like capture-20250101-093000.png
_SLUG_RE = re.compile(r"(\d{8}-\d{6})")
_IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}


class ReplayClock:
    """Clock that only moves when the replay says so."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance_to(self, moment: datetime) -> None:
        if moment > self.now:
            self.now = moment


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay a folder of captures through a Worklens session")
    parser.add_argument("folder", type=Path, help="Folder holding capture images")
    parser.add_argument("--goal", required=True, help="Session goal to analyse against")
    parser.add_argument("--owner", default="replay", help="Owner id for the session (default: replay)")
    parser.add_argument(
        "--tail-seconds",
        type=int,
        default=60,
        help="Seconds of activity assumed after the last capture before stopping",
    )
    parser.add_argument("--limit", type=int, default=None, help="Replay at most this many captures")
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("replay", settings.logging.directory, settings.logging.level)

    captures = _collect_captures(args.folder, settings.timezone)
    if args.limit is not None:
        captures = captures[: max(0, args.limit)]
    if not captures:
        logger.warning("No capture images found under %s", args.folder)
        return

    clock = ReplayClock(captures[0][0])
    store = SqliteReportStore(settings.storage.db_path)
    adapter = create_adapter(settings, logger)
    service = WorkSessionService.from_settings(settings, adapter, logger, store=store, goals=store, clock=clock)
    logger.info("Replaying %s captures from %s via %s", len(captures), args.folder, service.backend)

    try:
        session = service.start_session(args.owner, args.goal)
        for index, (captured_at, path) in enumerate(captures, start=1):
            clock.advance_to(captured_at)
            service.on_capture(session.id, captured_at, CaptureOrigin.TIMER, path.read_bytes())
            logger.info("Capture %s/%s replayed (%s)", index, len(captures), path.name)

        clock.advance_to(captures[-1][0] + timedelta(seconds=max(0, args.tail_seconds)))
        session = service.stop_session(session.id)
    except Exception as exc:
        logger.exception("Replay failed: %s", exc)
        raise
    finally:
        service.shutdown(wait=True)

    markdown_path = write_report(store, session.id, settings.output.report_dir)
    logger.info("Replay finished: score=%s report=%s", session.latest_score, markdown_path)


def _collect_captures(folder: Path, timezone) -> List[Tuple[datetime, Path]]:
    if not folder.is_dir():
        raise FileNotFoundError(f"Capture folder not found: {folder}")
    found: List[Tuple[datetime, Path]] = []
    for path in folder.rglob("*"):
        if path.suffix.lower() not in _IMAGE_SUFFIXES or not path.is_file():
            continue
        found.append((_timestamp_for(path, timezone), path))
    found.sort(key=lambda item: (item[0], item[1].name))
    return found


def _timestamp_for(path: Path, timezone) -> datetime:
    match = _SLUG_RE.search(path.stem)
    if match:
        try:
            return datetime.strptime(match.group(1), "%Y%m%d-%H%M%S").replace(tzinfo=timezone)
        except ValueError:
            pass
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone)


if __name__ == "__main__":
    main()
