from __future__ import annotations

from flask import current_app

from .generation import (
    GenerationError,
    _get_text_generator,
    clean_text,
    extract_generation_parameters,
    load_prompt_entry,
    parse_json_object,
    render_prompt,
    request_completion,
)

PROMPT_KEY = "generate_book_title"
MAX_TITLE_LENGTH = 150


class TitleGenerationError(GenerationError):
    """Raised when a title suggestion cannot be produced."""


def generate_book_title(description: str) -> str:
    """Suggest a creative book title for ``description``."""

    cleaned = (description or "").strip()
    if not cleaned:
        raise TitleGenerationError("Describe the book so the assistant can suggest a title.")

    try:
        config_entry = load_prompt_entry(PROMPT_KEY)
    except GenerationError as exc:
        raise TitleGenerationError(str(exc)) from exc

    response_text = request_completion(
        _get_text_generator(),
        render_prompt(config_entry["prompt_template"], description=cleaned),
        extract_generation_parameters(config_entry.get("parameters")),
        error_cls=TitleGenerationError,
        action="suggesting a title",
    )

    data = parse_json_object(response_text)
    title = clean_text(data.get("title")) if data else ""
    if not title:
        raise TitleGenerationError("The title generator did not return a title.")
    if len(title) > MAX_TITLE_LENGTH:
        current_app.logger.info("Trimming a %d character title suggestion.", len(title))
        title = title[:MAX_TITLE_LENGTH].rstrip()
    return title
