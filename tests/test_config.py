"""Tests for environment-driven settings, backend selection and logging setup."""

import logging
from dataclasses import replace

import pytest

from worklens.config import get_settings
from worklens.inference import create_adapter
from worklens.local_llm_client import LocalLLMInferenceAdapter
from worklens.logging_utils import init_logger

ENV_KEYS = (
    "ANALYZER_BACKEND",
    "GEMINI_API_KEY",
    "LOCAL_LLM_MODEL",
    "LOCAL_LLM_BASE_URL",
    "TRIGGER_SMALL_TIER_THRESHOLD",
    "STOP_TIMEOUT_SECONDS",
    "LOG_LEVEL",
)


@pytest.fixture
def env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestSettings:
    def test_gemini_requires_key(self, env):
        env.setenv("ANALYZER_BACKEND", "gemini")
        with pytest.raises(RuntimeError, match="GEMINI_API_KEY"):
            get_settings()

    def test_local_backend_needs_no_key(self, env):
        env.setenv("ANALYZER_BACKEND", " Local ")
        settings = get_settings()
        assert settings.analyzer.backend == "local"
        assert settings.gemini.api_key == ""

    def test_defaults(self, env):
        env.setenv("ANALYZER_BACKEND", "local")
        settings = get_settings()
        assert settings.trigger.small_tier_threshold == 5
        assert settings.trigger.medium_tier_threshold == 10
        assert settings.trigger.large_tier_threshold == 20
        assert settings.scoring.full_credit_minutes == 25.0
        assert settings.pipeline.stop_timeout_seconds == 30.0
        assert settings.local_llm.base_url == "http://localhost:1234/v1"
        assert settings.logging.level == "INFO"

    def test_overrides(self, env):
        env.setenv("ANALYZER_BACKEND", "local")
        env.setenv("TRIGGER_SMALL_TIER_THRESHOLD", "3")
        env.setenv("STOP_TIMEOUT_SECONDS", "2.5")
        env.setenv("LOCAL_LLM_BASE_URL", "http://gpu-box:8000/v1/")
        env.setenv("LOG_LEVEL", "debug")
        settings = get_settings()
        assert settings.trigger.small_tier_threshold == 3
        assert settings.pipeline.stop_timeout_seconds == 2.5
        assert settings.local_llm.base_url == "http://gpu-box:8000/v1"
        assert settings.logging.level == "DEBUG"

    def test_settings_are_cached(self, env):
        env.setenv("ANALYZER_BACKEND", "local")
        assert get_settings() is get_settings()


class TestCreateAdapter:
    def test_local(self, env, log):
        env.setenv("ANALYZER_BACKEND", "local")
        env.setenv("LOCAL_LLM_MODEL", "qwen2-vl")
        adapter = create_adapter(get_settings(), log)
        assert isinstance(adapter, LocalLLMInferenceAdapter)
        assert adapter.name == "local"

    def test_unknown_backend(self, env, log):
        env.setenv("ANALYZER_BACKEND", "local")
        settings = get_settings()
        settings = replace(settings, analyzer=replace(settings.analyzer, backend="openai"))
        with pytest.raises(RuntimeError, match="Unknown ANALYZER_BACKEND"):
            create_adapter(settings, log)


class TestInitLogger:
    def test_file_and_console_handlers(self, tmp_path):
        logger = init_logger("worklens-test-file", tmp_path / "logs", "debug")
        try:
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 2
            assert (tmp_path / "logs").is_dir()
            # A second call must not stack handlers.
            assert len(init_logger("worklens-test-file", tmp_path / "logs").handlers) == 2
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

    def test_console_only(self):
        logger = init_logger("worklens-test-console", None)
        try:
            assert len(logger.handlers) == 1
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
