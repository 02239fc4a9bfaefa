from __future__ import annotations

from typing import Dict, List

from flask import current_app

from ..models import BookSpec, Outline
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

PROMPT_KEY = "generate_outline"


class OutlineGenerationError(GenerationError):
    """Raised when an outline cannot be generated."""


def generate_outline(book: BookSpec) -> Outline:
    """Ask the model for a chapter-by-chapter outline of ``book``.

    The caller is expected to have validated ``book``. Any transport error,
    empty reply or reply that does not describe at least one uniquely titled
    chapter raises :class:`OutlineGenerationError`; nothing partial is
    returned.
    """

    try:
        config_entry = load_prompt_entry(PROMPT_KEY)
    except GenerationError as exc:
        raise OutlineGenerationError(str(exc)) from exc

    final_prompt = render_prompt(
        config_entry["prompt_template"],
        title=book.title,
        description=book.description,
        details=book.details,
    )

    current_app.logger.info("Generating outline for '%s'.", book.title)
    response_text = request_completion(
        _get_text_generator(),
        final_prompt,
        extract_generation_parameters(config_entry.get("parameters")),
        error_cls=OutlineGenerationError,
        action="generating the outline",
    )

    entries = _parse_outline_payload(response_text)
    outline = Outline.from_entries(entries)
    current_app.logger.info("Outline for '%s' has %d chapters.", book.title, len(outline))
    return outline


def _parse_outline_payload(raw_text: str) -> List[Dict[str, str]]:
    data = parse_json_object(raw_text)
    if data is None:
        raise OutlineGenerationError("The outline generator did not return valid JSON.")

    chapters = data.get("chapters")
    if not isinstance(chapters, list):
        raise OutlineGenerationError("The outline generator response is missing the 'chapters' list.")

    entries: List[Dict[str, str]] = []
    seen_titles: set[str] = set()
    for item in chapters:
        if not isinstance(item, dict):
            raise OutlineGenerationError("Every outline entry must be an object.")
        title = clean_text(item.get("title"))
        description = clean_text(item.get("description"))
        if not title:
            raise OutlineGenerationError("Every outline entry needs a chapter title.")
        if title in seen_titles:
            raise OutlineGenerationError(f"The outline repeats the chapter title '{title}'.")
        seen_titles.add(title)
        entries.append({"title": title, "description": description})

    if not entries:
        raise OutlineGenerationError("The outline generator returned no chapters.")

    return entries
