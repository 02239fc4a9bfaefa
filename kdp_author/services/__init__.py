"""Service layer helpers for AI-assisted book writing."""

from __future__ import annotations

from .assistant import WritingAssistanceError, assist_writing  # noqa: F401
from .book import BookGenerationError, generate_book  # noqa: F401
from .chapters import ChapterGenerationError, build_chapter_request, write_chapter  # noqa: F401
from .generation import GenerationError  # noqa: F401
from .outline import OutlineGenerationError, generate_outline  # noqa: F401
from .titles import TitleGenerationError, generate_book_title  # noqa: F401
from .workflow import ChapterWriteResult, ManuscriptWorkflow, UnknownChapterError  # noqa: F401

__all__ = [
    "BookGenerationError",
    "ChapterGenerationError",
    "ChapterWriteResult",
    "GenerationError",
    "ManuscriptWorkflow",
    "OutlineGenerationError",
    "TitleGenerationError",
    "UnknownChapterError",
    "WritingAssistanceError",
    "assist_writing",
    "build_chapter_request",
    "generate_book",
    "generate_book_title",
    "generate_outline",
    "write_chapter",
]
