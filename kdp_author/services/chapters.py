"""Chapter writing: request context assembly and the single-chapter call.

Every request carries the whole picture: the book's title and description,
the complete outline, the chapter to write, and the full text of every chapter
written so far in outline order. Nothing is truncated however long the
manuscript grows.
"""
from __future__ import annotations

from typing import Any, Dict, Sequence

from flask import current_app

from ..models import BookSpec, ChapterStub, Outline, WrittenChapter
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

PROMPT_KEY = "generate_chapter"
FIRST_CHAPTER_NOTE = "This is the first chapter."


class ChapterGenerationError(GenerationError):
    """Raised when a chapter cannot be written."""


def build_chapter_request(
    book: BookSpec,
    outline: Outline,
    target: ChapterStub,
    previously_written: Sequence[WrittenChapter],
) -> Dict[str, Any]:
    return {
        "title": book.title,
        "description": book.description,
        "chapterOutline": outline.to_payload(),
        "targetChapter": target.to_payload(),
        "previousChapters": [chapter.to_payload() for chapter in previously_written],
    }


def _format_outline(request_payload: Dict[str, Any]) -> str:
    return "\n".join(
        f"- {entry['title']}: {entry['description']}" for entry in request_payload["chapterOutline"]
    )


def _format_previous_chapters(request_payload: Dict[str, Any]) -> str:
    previous = request_payload["previousChapters"]
    if not previous:
        return FIRST_CHAPTER_NOTE
    blocks = [f"Chapter: {entry['title']}\n---\n{entry['content']}\n---" for entry in previous]
    return "\n\n".join(blocks)


def write_chapter(
    book: BookSpec,
    outline: Outline,
    target: ChapterStub,
    previously_written: Sequence[WrittenChapter],
) -> WrittenChapter:
    """Write the full content of ``target``.

    The returned chapter's title is whatever the model echoed back; it is not
    compared with ``target.title`` here.
    """

    if outline.index_of(target.title) == -1:
        raise ValueError(f"Chapter '{target.title}' is not part of the outline.")

    try:
        config_entry = load_prompt_entry(PROMPT_KEY)
    except GenerationError as exc:
        raise ChapterGenerationError(str(exc)) from exc

    request_payload = build_chapter_request(book, outline, target, previously_written)
    final_prompt = render_prompt(
        config_entry["prompt_template"],
        title=request_payload["title"],
        description=request_payload["description"],
        chapter_outline=_format_outline(request_payload),
        previous_chapters=_format_previous_chapters(request_payload),
        target_title=target.title,
        target_description=target.description,
    )

    current_app.logger.info(
        "Writing chapter '%s' of '%s' with %d previous chapters as context.",
        target.title,
        book.title,
        len(previously_written),
    )
    response_text = request_completion(
        _get_text_generator(),
        final_prompt,
        extract_generation_parameters(config_entry.get("parameters")),
        error_cls=ChapterGenerationError,
        action=f"writing chapter '{target.title}'",
    )
    return parse_chapter_payload(response_text, error_cls=ChapterGenerationError)


def parse_chapter_payload(
    raw_text: Any,
    *,
    error_cls: type[GenerationError] = ChapterGenerationError,
) -> WrittenChapter:
    data = raw_text if isinstance(raw_text, dict) else parse_json_object(raw_text)
    if data is None:
        raise error_cls("The chapter generator did not return valid JSON.")

    title = clean_text(data.get("title"))
    content = clean_text(data.get("content"))
    if not title:
        raise error_cls("The chapter generator response is missing the chapter title.")
    if not content:
        raise error_cls(f"The chapter generator returned no content for '{title}'.")
    return WrittenChapter(title=title, content=content)
