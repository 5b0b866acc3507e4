from __future__ import annotations

import base64
import threading
import time
from typing import Any, Optional, Sequence

import requests

from .config import LocalLLMSettings
from .errors import MalformedResponse, UpstreamRejected
from .inference import PROMPT, describe_context
from .models import AnalysisContext, Capture, RawResponse
from .retry import RetryPolicy, TransientError


class LocalLLMInferenceAdapter:
    """Inference over an OpenAI-compatible HTTP API (e.g. LM Studio).

    Expected base URL: http://localhost:1234/v1
    Endpoint used:     POST {base_url}/chat/completions
    """

    name = "local"

    def __init__(self, settings: LocalLLMSettings, log, session: requests.Session | None = None):
        self._settings = settings
        self._logger = log
        self._http = session or requests.Session()
        self._policy = RetryPolicy(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_seconds,
            jitter=settings.retry_jitter_seconds,
        )
        self._model = self._resolve_model(settings)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def analyze(
        self,
        context: AnalysisContext,
        captures: Sequence[Capture],
        cancel: Optional[threading.Event] = None,
    ) -> RawResponse:
        content: list[dict[str, Any]] = [{"type": "text", "text": describe_context(context, captures)}]
        for capture in captures:
            if capture.image:
                content.append({"type": "image_url", "image_url": {"url": _image_as_data_url(capture.image)}})

        payload: dict[str, Any] = {
            "model": self._model,
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
            "stream": False,
            "messages": [
                {"role": "system", "content": PROMPT},
                {"role": "user", "content": content},
            ],
            "response_format": {"type": "json_object"},
        }

        started = time.monotonic()
        data = self._policy.run(
            lambda: self._post(payload),
            log=self._logger,
            label=f"Local LLM analysis for session {context.session_id}",
            cancel=cancel,
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return RawResponse(text=_message_text(data), model=self._model, elapsed_ms=elapsed_ms)

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._settings.base_url}/chat/completions"
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"

        try:
            res = self._http.post(url, headers=headers, json=payload, timeout=self._settings.timeout_seconds)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise TransientError(f"Local LLM request failed: {exc}") from exc

        if res.status_code >= 500:
            raise TransientError(f"Local LLM HTTP {res.status_code}: {res.text[:200]}")
        if res.status_code >= 400:
            raise UpstreamRejected(res.status_code, res.text[:500])
        try:
            data = res.json()
        except ValueError as exc:
            raise MalformedResponse(f"Local LLM returned a non-JSON body: {exc}", raw=res.text) from exc
        if not isinstance(data, dict):
            raise MalformedResponse(f"Local LLM returned {type(data).__name__}, expected an object", raw=res.text)
        return data

    def _resolve_model(self, settings: LocalLLMSettings) -> str:
        configured = (settings.model or "").strip()
        if configured and configured.lower() not in {"local-model", "auto"}:
            return configured

        # Auto-detect via the OpenAI-compatible models endpoint.
        try:
            res = self._http.get(f"{settings.base_url}/models", timeout=min(10.0, settings.timeout_seconds))
            if res.status_code >= 400:
                self._logger.warning("Local LLM models discovery failed (HTTP %s)", res.status_code)
                return "local-model"
            models = res.json().get("data")
            if isinstance(models, list) and models and isinstance(models[0], dict) and models[0].get("id"):
                model_id = str(models[0]["id"])
                self._logger.info("Auto-selected LOCAL_LLM_MODEL=%s", model_id)
                return model_id
        except (requests.RequestException, ValueError) as exc:
            self._logger.warning("Local LLM models discovery failed: %s", exc)
        return "local-model"


def _message_text(data: dict[str, Any]) -> str:
    choices = data.get("choices")
    first = choices[0] if isinstance(choices, list) and choices else None
    message = first.get("message") if isinstance(first, dict) else None
    text = message.get("content") if isinstance(message, dict) else None
    if isinstance(text, list):
        # Some servers return structured content; join the text chunks.
        text = "\n".join(
            str(item.get("text") or "") for item in text if isinstance(item, dict) and item.get("type") == "text"
        )
    return text if isinstance(text, str) else ""


def _image_as_data_url(raw: bytes) -> str:
    encoded = base64.b64encode(raw).decode("ascii")
    return f"data:image/png;base64,{encoded}"
