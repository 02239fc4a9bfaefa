# api_handler.py
"""Hosted LLM backend built on the official OpenAI Python SDK.

:class:`OpenAIUnifiedGenerator` exposes the same ``generate_response`` method
as the local :class:`text_generator.TextGenerator`, so the services never
need to know which backend answered them.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import openai

LOGGER = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert author who writes books for Amazon KDP. "
    "When asked for JSON, reply with a single JSON object and nothing else."
)


class OpenAIAPIRateLimitError(RuntimeError):
    """Raised when the OpenAI API reports a rate limit condition."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message
            or "The OpenAI API rate limit has been exceeded. Please try again shortly."
        )


def _raise_for_openai_api_error(exc: Exception) -> None:
    """Raise a specialised error when an API call reports rate limiting."""

    if isinstance(exc, openai.RateLimitError):
        raise OpenAIAPIRateLimitError() from exc

    status_code = getattr(exc, "status_code", None)
    if status_code == 429:
        raise OpenAIAPIRateLimitError() from exc

    code = getattr(exc, "code", None)
    if isinstance(code, str) and "rate" in code.lower():
        raise OpenAIAPIRateLimitError() from exc

    message = str(exc).lower()
    if "rate limit" in message or "too many requests" in message:
        raise OpenAIAPIRateLimitError() from exc


class OpenAIUnifiedGenerator:
    """
    Send a prompt to an OpenAI model through whichever API its family speaks.

    - GPT-5 / o3 / o4 / 4.1(x) → Responses API
    - everything else → Chat Completions API
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        default_max_tokens: int = 4096,
        *,
        timeout: Optional[float] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        client: Any = None,
    ) -> None:
        self.model_name = (model_name or "").strip()
        if not self.model_name:
            raise ValueError("An OpenAI model name is required.")
        self.api_key = (api_key or "").strip()
        self.default_max_tokens = int(default_max_tokens or 4096)
        self.system_prompt = system_prompt

        if client is None:
            client_kwargs: Dict[str, Any] = {"api_key": self.api_key}
            if timeout:
                client_kwargs["timeout"] = float(timeout)
            client = openai.OpenAI(**client_kwargs)
        self._client = client

    def _uses_responses_api(self) -> bool:
        name = self.model_name.lower()
        return name.startswith(("gpt-5", "o3", "o4", "gpt-4.1"))

    def generate_response(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        **_ignored: Any,
    ) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = int(max_new_tokens if max_new_tokens is not None else self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_new_tokens must be positive.")

        try:
            if self._uses_responses_api():
                return self._call_responses(prompt, max_tokens, temperature, top_p)
            return self._call_chat(prompt, max_tokens, temperature, top_p)
        except openai.OpenAIError as exc:
            LOGGER.warning("OpenAI request for model %s failed: %s", self.model_name, exc)
            _raise_for_openai_api_error(exc)
            raise

    def get_compute_device(self) -> str:
        return "OpenAI API"

    def signature(self) -> Tuple[str, str]:
        # Never return raw secrets
        redacted = (self.api_key[:4] + "…" + self.api_key[-4:]) if self.api_key else ""
        return (self.model_name, redacted)

    def _call_responses(
        self,
        prompt: str,
        max_tokens: int,
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> str:
        payload = {
            key: value
            for key, value in {
                "model": self.model_name,
                "instructions": self.system_prompt,
                "input": prompt,
                "max_output_tokens": max_tokens,
                "temperature": float(temperature) if temperature is not None else None,
                "top_p": float(top_p) if top_p is not None else None,
                "reasoning": {"effort": "low"},
            }.items()
            if value is not None
        }

        resp = self._client.responses.create(**payload)
        text = (getattr(resp, "output_text", None) or "").strip()
        if text:
            return text

        # A reasoning model can spend its whole budget before emitting text.
        status = getattr(resp, "status", None)
        reason = getattr(getattr(resp, "incomplete_details", None), "reason", None)
        if status == "incomplete" and reason == "max_output_tokens":
            retry_payload = dict(payload)
            retry_payload["max_output_tokens"] = int(max_tokens * 1.5)
            resp = self._client.responses.create(**retry_payload)
            text = (getattr(resp, "output_text", None) or "").strip()
            if text:
                return text

        raise RuntimeError(
            f"Model returned no text content. Raw response (truncated): {self._shorten_debug(str(resp))}"
        )

    def _call_chat(
        self,
        prompt: str,
        max_tokens: int,
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> str:
        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "n": 1,
        }
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if top_p is not None:
            kwargs["top_p"] = float(top_p)

        resp = self._client.chat.completions.create(**kwargs)
        text = self._extract_text_from_chat(resp).strip()
        if text:
            return text
        raise RuntimeError(
            f"Chat completion returned no text. Raw response (truncated): {self._shorten_debug(str(resp))}"
        )

    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        msg = getattr(choices[0], "message", None)
        content = msg.get("content") if isinstance(msg, dict) else getattr(msg, "content", None)
        if isinstance(content, list):
            parts: List[str] = [
                str(part.get("text") or "")
                for part in content
                if isinstance(part, dict) and part.get("type") == "text"
            ]
            return "\n".join(part for part in parts if part)
        return str(content or "")

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s
