# oracle.py
# The text-generation oracle: messages in, text out. Fallible and slow.
#
# Works against any OpenAI-compatible chat endpoint (OpenRouter, Ollama's
# /v1, vLLM, ...). Every failure mode surfaces as OracleUnavailable.

import logging
import threading

import openai
from openai import OpenAI

from pmcro.cancellation import run_cancellable
from pmcro.config import Settings
from pmcro.errors import OracleUnavailable

logger = logging.getLogger(__name__)


class Oracle:
    """
    Thin wrapper over a chat-completions client.

    Example:
        oracle = Oracle(model="qwen2.5-coder:latest", base_url="http://localhost:11434/v1")
        text = oracle.chat([{"role": "user", "content": "Reply with {}"}])
    """

    def __init__(
        self,
        model: str,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 300.0,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        client: OpenAI | None = None,
    ) -> None:
        self._model = model
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client = client or OpenAI(base_url=base_url, api_key=api_key, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Oracle":
        return cls(
            model=settings.oracle_model,
            base_url=settings.oracle_base_url,
            api_key=settings.oracle_api_key,
            timeout=settings.oracle_timeout,
            temperature=settings.oracle_temperature,
            max_tokens=settings.oracle_max_tokens,
        )

    @property
    def model(self) -> str:
        return self._model

    # ------------------------------------------------------------------
    # Low-level model call
    # ------------------------------------------------------------------

    def _complete(self, messages: list[dict], json_mode: bool, timeout: float) -> str:
        kwargs = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "timeout": timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise OracleUnavailable(f"Oracle request failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise OracleUnavailable("Oracle returned an empty response.")
        return content.strip()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chat(
        self,
        messages: list[dict],
        *,
        json_mode: bool = True,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        """
        One blocking, cancellable round-trip.

        Raises OracleUnavailable on timeout, transport or API errors, and
        OperationCancelled if `cancel` is set while waiting.
        """
        timeout = timeout or self._timeout
        logger.debug("Oracle call: model=%s messages=%d", self._model, len(messages))
        try:
            return run_cancellable(
                self._complete, messages, json_mode, timeout,
                timeout=timeout, cancel=cancel, where="oracle round-trip",
            )
        except TimeoutError as exc:
            raise OracleUnavailable(f"Oracle did not answer within {timeout:g}s.") from exc
