from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv


@dataclass(frozen=True)
class AnalyzerSettings:
    backend: str = "gemini"


@dataclass(frozen=True)
class GeminiSettings:
    api_key: str
    model: str
    max_tokens: int
    temperature: float
    timeout_seconds: float = 60.0
    max_retries: int = 2
    retry_base_seconds: float = 1.0
    retry_jitter_seconds: float = 0.0


@dataclass(frozen=True)
class LocalLLMSettings:
    base_url: str
    model: str
    api_key: str | None
    max_tokens: int
    temperature: float
    timeout_seconds: float = 120.0
    max_retries: int = 2
    retry_base_seconds: float = 1.0
    retry_jitter_seconds: float = 0.0


@dataclass(frozen=True)
class TriggerSettings:
    small_tier_max_captures: int = 10
    small_tier_threshold: int = 5
    medium_tier_max_captures: int = 20
    medium_tier_threshold: int = 10
    large_tier_threshold: int = 20
    minimal_pass_min_captures: int = 2


@dataclass(frozen=True)
class ScoringSettings:
    alignment_bonus_threshold: float = 70.0
    alignment_bonus: float = 1.0
    full_credit_minutes: float = 25.0


@dataclass(frozen=True)
class PipelineSettings:
    stop_timeout_seconds: float = 30.0
    max_workers: int = 4


@dataclass(frozen=True)
class StorageSettings:
    db_path: Path


@dataclass(frozen=True)
class LoggingSettings:
    directory: Path
    level: str = "INFO"


@dataclass(frozen=True)
class OutputSettings:
    report_dir: Path


@dataclass(frozen=True)
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass(frozen=True)
class AppSettings:
    timezone: ZoneInfo
    analyzer: AnalyzerSettings
    gemini: GeminiSettings
    local_llm: LocalLLMSettings
    trigger: TriggerSettings
    scoring: ScoringSettings
    pipeline: PipelineSettings
    storage: StorageSettings
    logging: LoggingSettings
    output: OutputSettings
    server: ServerSettings


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    dotenv_path = Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=dotenv_path, override=False, encoding="utf-8-sig")

    timezone = ZoneInfo(os.getenv("TIMEZONE", "UTC"))

    analyzer = AnalyzerSettings(backend=os.getenv("ANALYZER_BACKEND", "gemini").strip().lower())

    # The key is only mandatory when Gemini is the selected backend.
    gemini_key = _require("GEMINI_API_KEY") if analyzer.backend == "gemini" else os.getenv("GEMINI_API_KEY", "")
    gemini = GeminiSettings(
        api_key=gemini_key,
        model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        max_tokens=int(os.getenv("GEMINI_MAX_TOKENS", "2048")),
        temperature=float(os.getenv("GEMINI_TEMPERATURE", "0.3")),
        timeout_seconds=float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60")),
        max_retries=int(os.getenv("GEMINI_MAX_RETRIES", "2")),
        retry_base_seconds=float(os.getenv("GEMINI_RETRY_BASE_SECONDS", "1.0")),
        retry_jitter_seconds=float(os.getenv("GEMINI_RETRY_JITTER_SECONDS", "0")),
    )

    local_llm = LocalLLMSettings(
        base_url=os.getenv("LOCAL_LLM_BASE_URL", "http://localhost:1234/v1").rstrip("/"),
        model=os.getenv("LOCAL_LLM_MODEL", "auto"),
        api_key=os.getenv("LOCAL_LLM_API_KEY"),
        max_tokens=int(os.getenv("LOCAL_LLM_MAX_TOKENS", "2048")),
        temperature=float(os.getenv("LOCAL_LLM_TEMPERATURE", "0.3")),
        timeout_seconds=float(os.getenv("LOCAL_LLM_TIMEOUT_SECONDS", "120")),
        max_retries=int(os.getenv("LOCAL_LLM_MAX_RETRIES", "2")),
        retry_base_seconds=float(os.getenv("LOCAL_LLM_RETRY_BASE_SECONDS", "1.0")),
        retry_jitter_seconds=float(os.getenv("LOCAL_LLM_RETRY_JITTER_SECONDS", "0")),
    )

    trigger = TriggerSettings(
        small_tier_max_captures=int(os.getenv("TRIGGER_SMALL_TIER_MAX", "10")),
        small_tier_threshold=int(os.getenv("TRIGGER_SMALL_TIER_THRESHOLD", "5")),
        medium_tier_max_captures=int(os.getenv("TRIGGER_MEDIUM_TIER_MAX", "20")),
        medium_tier_threshold=int(os.getenv("TRIGGER_MEDIUM_TIER_THRESHOLD", "10")),
        large_tier_threshold=int(os.getenv("TRIGGER_LARGE_TIER_THRESHOLD", "20")),
        minimal_pass_min_captures=int(os.getenv("TRIGGER_MINIMAL_PASS_MIN_CAPTURES", "2")),
    )

    scoring = ScoringSettings(
        alignment_bonus_threshold=float(os.getenv("ALIGNMENT_BONUS_THRESHOLD", "70")),
        alignment_bonus=float(os.getenv("ALIGNMENT_BONUS", "1.0")),
        full_credit_minutes=float(os.getenv("FULL_CREDIT_MINUTES", "25")),
    )

    pipeline = PipelineSettings(
        stop_timeout_seconds=float(os.getenv("STOP_TIMEOUT_SECONDS", "30")),
        max_workers=int(os.getenv("ANALYSIS_MAX_WORKERS", "4")),
    )

    storage = StorageSettings(db_path=Path(os.getenv("WORKLENS_DB_PATH", "data/worklens.db")).resolve())

    logging_settings = LoggingSettings(
        directory=Path(os.getenv("LOG_DIR", "logs")).resolve(),
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

    output_settings = OutputSettings(report_dir=Path(os.getenv("REPORT_OUTPUT_DIR", "reports")).resolve())

    server = ServerSettings(
        host=os.getenv("WORKLENS_HOST", "127.0.0.1"),
        port=int(os.getenv("WORKLENS_PORT", "8080")),
    )

    return AppSettings(
        timezone=timezone,
        analyzer=analyzer,
        gemini=gemini,
        local_llm=local_llm,
        trigger=trigger,
        scoring=scoring,
        pipeline=pipeline,
        storage=storage,
        logging=logging_settings,
        output=output_settings,
        server=server,
    )


def _require(key: str) -> str:
    value = os.getenv(key)
    if not value:
        raise RuntimeError(f"Environment variable '{key}' is required but missing")
    return value
