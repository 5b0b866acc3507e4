from __future__ import annotations

import argparse

import uvicorn

from worklens.api import create_app
from worklens.config import get_settings
from worklens.inference import create_adapter
from worklens.logging_utils import init_logger
from worklens.service import WorkSessionService
from worklens.storage import SqliteReportStore


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the Worklens session API")
    parser.add_argument("--host", default=None, help="Bind address (defaults to WORKLENS_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (defaults to WORKLENS_PORT)")
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("server", settings.logging.directory, settings.logging.level)

    store = SqliteReportStore(settings.storage.db_path)
    adapter = create_adapter(settings, logger)
    service = WorkSessionService.from_settings(settings, adapter, logger, store=store, goals=store)
    logger.info("Analyzer backend: %s, database: %s", service.backend, settings.storage.db_path)

    host = args.host or settings.server.host
    port = args.port or settings.server.port
    try:
        uvicorn.run(create_app(service), host=host, port=port, log_level=settings.logging.level.lower())
    except Exception as exc:
        logger.exception("Server stopped with an error: %s", exc)
        raise
    finally:
        service.shutdown(wait=False)


if __name__ == "__main__":
    main()
