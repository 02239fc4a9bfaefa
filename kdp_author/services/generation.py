"""Shared plumbing for every LLM-backed service.

Prompt templates and their generation parameters live in a JSON file whose
path is ``PROMPT_CONFIG_PATH``. Each service loads its entry, renders the
template, asks the configured text generator for a response and parses the
JSON it is instructed to return.
"""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Optional

from flask import current_app

from api_handler import OpenAIAPIRateLimitError, OpenAIUnifiedGenerator

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
GENERATOR_CACHE_KEY = "_TEXT_GENERATOR_INSTANCE"

_PLACEHOLDER_PATTERN = re.compile(r"\{([a-z_]+)\}")


class GenerationError(RuntimeError):
    """Base class for failures while talking to the text generator."""


def load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    try:
        entry = config[key]
    except KeyError as exc:  # pragma: no cover - configuration issues are caught at runtime
        raise GenerationError(f"Prompt configuration is missing the '{key}' entry.") from exc
    if not isinstance(entry, dict):
        raise GenerationError(f"Prompt configuration entry '{key}' must be a dictionary.")
    if not entry.get("prompt_template"):
        raise GenerationError(f"Prompt configuration entry '{key}' is missing the template text.")
    return entry


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    if not config_path:
        raise GenerationError("PROMPT_CONFIG_PATH is not configured.")

    path = Path(config_path)
    if not path.exists():
        raise GenerationError(f"Prompt configuration file not found at: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:  # pragma: no cover - malformed file should be obvious at runtime
            raise GenerationError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise GenerationError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {
    "max_new_tokens",
    "temperature",
    "top_p",
    "repetition_penalty",
    "presence_penalty",
    "frequency_penalty",
    "top_k",
}


def extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to generation kwargs supported by the LLM."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]
    return kwargs


def render_prompt(template: str, **values: Any) -> str:
    """Substitute ``{name}`` placeholders in one pass, leaving other braces alone.

    Substituted values are never rescanned, so chapter text that happens to
    contain ``{title}`` is sent verbatim.
    """

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        raw = values[key]
        return raw if isinstance(raw, str) else str(raw)

    return _PLACEHOLDER_PATTERN.sub(_replace, template)


def _get_text_generator() -> Optional[Any]:  # pragma: no cover - integration point
    app = current_app
    if GENERATOR_CACHE_KEY in app.config:
        return app.config[GENERATOR_CACHE_KEY]

    backend = (app.config.get("LLM_BACKEND") or "openai").strip().lower()
    generator: Optional[Any] = None
    if backend == "local":
        model_path = app.config.get("TEXT_GENERATOR_MODEL_PATH")
        if not model_path:
            app.logger.warning("LLM_BACKEND is 'local' but TEXT_GENERATOR_MODEL_PATH is not configured.")
        else:
            try:
                from text_generator import TextGenerator

                app.logger.info("Initialising local text generator with model path: %s", model_path)
                generator = TextGenerator(model_path=model_path)
            except Exception as exc:
                app.logger.warning("Failed to initialise text generator at '%s': %s", model_path, exc)
    else:
        api_key = app.config.get("OPENAI_API_KEY")
        if not api_key:
            app.logger.warning("OPENAI_API_KEY is not configured; generation is unavailable.")
        else:
            try:
                generator = OpenAIUnifiedGenerator(
                    app.config.get("OPENAI_MODEL", "gpt-4o-mini"),
                    api_key,
                    default_max_tokens=app.config.get("OPENAI_MAX_TOKENS", 4096),
                    timeout=app.config.get("OPENAI_TIMEOUT"),
                )
                model_name, redacted_key = generator.signature()
                app.logger.info(
                    "Using OpenAI model '%s' (key %s) via %s for generation.",
                    model_name,
                    redacted_key,
                    generator.get_compute_device(),
                )
            except Exception as exc:
                app.logger.warning("Failed to initialise the OpenAI client: %s", exc)

    app.config[GENERATOR_CACHE_KEY] = generator
    return generator


def request_completion(
    generator: Optional[Any],
    prompt: str,
    parameters: Dict[str, Any],
    *,
    error_cls: type[GenerationError],
    action: str,
) -> str:
    """Call ``generator`` and convert any failure into ``error_cls``."""

    if generator is None:
        raise error_cls("No text generator is configured. Set OPENAI_API_KEY or a local model path.")

    try:
        response = generator.generate_response(prompt, **parameters)
    except Exception as exc:
        current_app.logger.warning("LLM %s failed. Error: %s", action, exc)
        if isinstance(exc, OpenAIAPIRateLimitError):
            raise error_cls(str(exc)) from exc
        raise error_cls(f"An unexpected error occurred while {action}. Please try again.") from exc

    text = (response or "").strip()
    if not text:
        raise error_cls(f"The assistant returned an empty response while {action}.")
    return text


_FENCE_PATTERN = re.compile(r"\A```(?:json)?\s*(.*?)\s*```\s*\Z", re.DOTALL | re.IGNORECASE)


def parse_json_object(raw_text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Best-effort extraction of a JSON object from a model response.

    A reply that is already valid JSON is used as is, so code fences inside
    string values are left alone. Otherwise a fence wrapping the whole reply
    is unwrapped and the text between the outermost braces is parsed.
    """

    text = (raw_text or "").strip()
    if not text:
        return None

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        pass
    else:
        return parsed if isinstance(parsed, dict) else None

    fence_match = _FENCE_PATTERN.search(text)
    if fence_match:
        text = fence_match.group(1).strip()

    if not text.startswith("{"):
        brace_index = text.find("{")
        if brace_index == -1:
            return None
        text = text[brace_index:]

    if not text.endswith("}"):
        closing_index = text.rfind("}")
        if closing_index == -1:
            return None
        text = text[: closing_index + 1]

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        current_app.logger.warning("Unable to parse generator output as JSON: %s", text[:500])
        return None

    return parsed if isinstance(parsed, dict) else None


def clean_text(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()
