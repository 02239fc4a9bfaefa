from __future__ import annotations

from typing import List

from flask import current_app

from ..models import BookSpec, WrittenChapter
from .chapters import parse_chapter_payload
from .generation import (
    GenerationError,
    _get_text_generator,
    extract_generation_parameters,
    load_prompt_entry,
    parse_json_object,
    render_prompt,
    request_completion,
)

PROMPT_KEY = "generate_book"


class BookGenerationError(GenerationError):
    """Raised when a complete book cannot be generated in one pass."""


def generate_book(book: BookSpec) -> List[WrittenChapter]:
    """Write every chapter of ``book`` in a single request.

    Nothing is stored: the chapters come back in the order the model wrote
    them and the caller decides what to do with them.
    """

    try:
        config_entry = load_prompt_entry(PROMPT_KEY)
    except GenerationError as exc:
        raise BookGenerationError(str(exc)) from exc

    final_prompt = render_prompt(
        config_entry["prompt_template"],
        title=book.title,
        description=book.description,
        details=book.details,
    )

    current_app.logger.info("Generating the complete book '%s' in one pass.", book.title)
    response_text = request_completion(
        _get_text_generator(),
        final_prompt,
        extract_generation_parameters(config_entry.get("parameters")),
        error_cls=BookGenerationError,
        action="writing the book",
    )

    data = parse_json_object(response_text)
    if data is None:
        raise BookGenerationError("The book generator did not return valid JSON.")
    raw_chapters = data.get("chapters")
    if not isinstance(raw_chapters, list) or not raw_chapters:
        raise BookGenerationError("The book generator returned no chapters.")

    chapters: List[WrittenChapter] = []
    for item in raw_chapters:
        if not isinstance(item, dict):
            raise BookGenerationError("Every chapter in the book must be an object.")
        chapters.append(parse_chapter_payload(item, error_cls=BookGenerationError))
    return chapters
