"""Helpers for exporting a manuscript as a plain text download."""
from __future__ import annotations

import re
from typing import Iterable, Optional

_FILENAME_UNSAFE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


class TextExportError(RuntimeError):
    """Raised when a manuscript cannot be exported."""


def _clean(value: Optional[str]) -> str:
    """Return ``value`` stripped of leading/trailing whitespace."""

    if not value:
        return ""
    return str(value).strip()


def manuscript_filename(book_title: str) -> str:
    """``"The Last Starlight!"`` becomes ``"the_last_starlight_.txt"``."""

    title = _clean(book_title)
    if not title:
        raise TextExportError("A book title is required to name the download.")
    return f"{_FILENAME_UNSAFE.sub('_', title).lower()}.txt"


def render_manuscript_text(book_title: str, chapters: Iterable[object]) -> str:
    """Render ``chapters`` under a top-level heading for ``book_title``.

    Chapters are written in the order given, each as a ``##`` heading followed
    by its content, with two blank lines between chapters.
    """

    title = _clean(book_title)
    if not title:
        raise TextExportError("A book title is required to export the manuscript.")

    sections = [
        f"## {_clean(getattr(chapter, 'title', ''))}\n\n{_clean(getattr(chapter, 'content', ''))}"
        for chapter in chapters
    ]
    if not sections:
        raise TextExportError("No chapters have been written yet.")

    return f"# {title}\n\n" + "\n\n\n".join(sections)


__all__ = ["TextExportError", "manuscript_filename", "render_manuscript_text"]
