"""Session controller for the outline-then-chapters workflow.

:class:`ManuscriptWorkflow` is the only code that changes a session's
:class:`~kdp_author.models.ManuscriptState`. Generation calls run outside the
session lock; every read-modify-write goes through
:meth:`ManuscriptStore.update`, so merges for different chapters of the same
session are serialised and a failed call never leaves a partial update behind.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Tuple

from flask import current_app

from ..manuscript import (
    ManuscriptConflictError,
    ManuscriptStateError,
    ManuscriptStore,
    compute_progress,
    merge_chapter,
)
from ..models import BookSpec, ChapterStub, ManuscriptState, Outline, Progress, WrittenChapter
from .chapters import write_chapter
from .outline import generate_outline


class UnknownChapterError(ManuscriptStateError):
    """Raised when a chapter id does not belong to the session's outline."""


@dataclass(frozen=True)
class ChapterWriteResult:
    stub: ChapterStub
    chapter: WrittenChapter
    chapters: Tuple[WrittenChapter, ...]
    progress: Progress
    title_mismatch: bool


class ManuscriptWorkflow:
    def __init__(
        self,
        store: ManuscriptStore,
        session_id: str,
        *,
        enforce_target_title: bool = True,
    ) -> None:
        self.store = store
        self.session_id = session_id
        self.enforce_target_title = enforce_target_title

    def state(self) -> ManuscriptState:
        return self.store.snapshot(self.session_id)

    def reset(self) -> None:
        self.store.discard(self.session_id)

    def start_outline(self, book: BookSpec) -> Outline:
        """Lock ``book`` in, generate its outline and store it.

        On failure the session goes back to its empty state so the user can
        start again from scratch.
        """

        request_id = uuid.uuid4().hex

        def begin(state: ManuscriptState) -> None:
            if state.is_locked:
                raise ManuscriptConflictError(
                    "This book already has an outline. Reset the manuscript to start over."
                )
            state.book = book
            state.chapters = ()
            state.pending.clear()
            state.outline_pending = True
            state.outline_request = request_id

        self.store.update(self.session_id, begin)

        try:
            outline = generate_outline(book)
        except Exception:
            self.store.update(self.session_id, lambda state: self._abandon_outline(state, request_id))
            raise

        def finish(state: ManuscriptState) -> bool:
            if not state.outline_pending or state.outline_request != request_id:
                return False
            state.outline = outline
            state.outline_pending = False
            state.outline_request = None
            return True

        if not self.store.update(self.session_id, finish):
            current_app.logger.info("Ignoring outline for '%s'; the manuscript was reset.", book.title)
            raise ManuscriptConflictError("The manuscript was reset while the outline was being generated.")
        return outline

    @staticmethod
    def _abandon_outline(state: ManuscriptState, request_id: str) -> None:
        if state.outline_pending and state.outline_request == request_id:
            state.book = None
            state.outline_pending = False
            state.outline_request = None

    def write(self, stub_id: int) -> ChapterWriteResult:
        """Write the chapter with ``stub_id`` and merge it into the manuscript."""

        def begin(state: ManuscriptState):
            if state.outline is None or state.book is None:
                raise ManuscriptStateError("Generate an outline before writing chapters.")
            stub = state.outline.get(stub_id)
            if stub is None:
                raise UnknownChapterError(f"Chapter {stub_id} is not part of this outline.")
            if stub_id in state.pending:
                raise ManuscriptConflictError(f"Chapter \"{stub.title}\" is already being written.")
            state.pending.add(stub_id)
            return state.book, state.outline, stub, state.chapters

        book, outline, stub, previous = self.store.update(self.session_id, begin)

        try:
            generated = write_chapter(book, outline, stub, previous)
        except Exception:
            self.store.update(self.session_id, lambda state: self._release(state, outline, stub_id))
            raise

        title_mismatch = generated.title != stub.title
        if title_mismatch:
            current_app.logger.warning(
                "Chapter %d came back titled '%s' instead of '%s'.",
                stub_id,
                generated.title,
                stub.title,
            )
            if self.enforce_target_title:
                generated = WrittenChapter(title=stub.title, content=generated.content)

        def merge(state: ManuscriptState):
            if state.outline is not outline:
                return None
            state.pending.discard(stub_id)
            state.chapters = merge_chapter(state.chapters, generated, outline)
            return state.chapters, compute_progress(state)

        merged = self.store.update(self.session_id, merge)
        if merged is None:
            current_app.logger.info("Ignoring chapter '%s'; the manuscript was reset.", stub.title)
            raise ManuscriptConflictError("The manuscript was reset while the chapter was being written.")

        chapters, progress = merged
        current_app.logger.info(
            "Merged chapter '%s' (%s written).", generated.title, progress.label()
        )
        return ChapterWriteResult(
            stub=stub,
            chapter=generated,
            chapters=chapters,
            progress=progress,
            title_mismatch=title_mismatch,
        )

    @staticmethod
    def _release(state: ManuscriptState, outline: Outline, stub_id: int) -> None:
        if state.outline is outline:
            state.pending.discard(stub_id)
