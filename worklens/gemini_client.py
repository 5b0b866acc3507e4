from __future__ import annotations

import io
import threading
import time
from contextlib import ExitStack
from typing import Any, List, Optional, Sequence

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from PIL import Image

from .config import GeminiSettings
from .errors import UpstreamRejected
from .inference import build_prompt
from .models import AnalysisContext, Capture, RawResponse
from .retry import RetryPolicy, TransientError


class GeminiInferenceAdapter:
    name = "gemini"

    def __init__(self, settings: GeminiSettings, log, model: Any = None):
        self._settings = settings
        self._logger = log
        self._policy = RetryPolicy(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_seconds,
            jitter=settings.retry_jitter_seconds,
        )
        if model is None:
            genai.configure(api_key=settings.api_key)
            model = genai.GenerativeModel(settings.model)
        self._model = model

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def analyze(
        self,
        context: AnalysisContext,
        captures: Sequence[Capture],
        cancel: Optional[threading.Event] = None,
    ) -> RawResponse:
        prompt = build_prompt(context, captures)
        generation_config = {
            "max_output_tokens": self._settings.max_tokens,
            "temperature": self._settings.temperature,
        }
        started = time.monotonic()
        response = self._policy.run(
            lambda: self._generate(prompt, captures, generation_config),
            log=self._logger,
            label=f"Gemini analysis for session {context.session_id}",
            cancel=cancel,
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)

        try:
            text = response.text or ""
        except ValueError as exc:
            # Blocked or empty candidates; the validator reports it as malformed.
            self._logger.warning("Gemini returned no text for session %s: %s", context.session_id, exc)
            text = ""
        self._logger.info(
            "Gemini responded for session %s in %sms (%s chars)", context.session_id, elapsed_ms, len(text)
        )
        return RawResponse(text=text, model=self._settings.model, elapsed_ms=elapsed_ms)

    def _generate(self, prompt: str, captures: Sequence[Capture], generation_config: dict[str, Any]):
        with ExitStack() as stack:
            parts: List[Any] = [prompt]
            for capture in captures:
                if not capture.image:
                    continue
                parts.append(stack.enter_context(Image.open(io.BytesIO(capture.image))))
            try:
                return self._model.generate_content(
                    parts,
                    generation_config=generation_config,
                    request_options={"timeout": self._settings.timeout_seconds},
                )
            except (google_exceptions.ServerError, google_exceptions.RetryError) as exc:
                raise TransientError(str(exc)) from exc
            except google_exceptions.ClientError as exc:
                raise UpstreamRejected(getattr(exc, "code", None), getattr(exc, "message", str(exc))) from exc
            except (ConnectionError, TimeoutError) as exc:
                raise TransientError(str(exc)) from exc
