"""In-memory manuscript state: the chapter merge, progress accounting and the
per-session store that serialises every update.

The merge is a pure function and needs no Flask application. The store is the
only place a
:class:`~kdp_author.models.ManuscriptState` is ever mutated, and each mutation
runs under the owning session's lock on a private copy that is only published
when the mutator returns normally.
"""
from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Dict, Iterator, Sequence, Tuple, TypeVar

from .models import ManuscriptState, Outline, Progress, WrittenChapter

T = TypeVar("T")


class ManuscriptStateError(RuntimeError):
    """Raised when an action does not make sense for the current manuscript."""


class ManuscriptConflictError(ManuscriptStateError):
    """Raised when an action collides with work already in progress."""


def merge_chapter(
    chapters: Sequence[WrittenChapter],
    result: WrittenChapter,
    outline: Outline,
) -> Tuple[WrittenChapter, ...]:
    """Return ``chapters`` with ``result`` merged in and re-sorted by outline position.

    A chapter whose title is already present is replaced where it stands;
    anything else is appended. The whole collection is then stably sorted by
    the index of each title in the outline. Titles missing from the outline
    get index -1 and so end up in front of every recognised chapter.
    """

    merged = list(chapters)
    existing_index = next(
        (index for index, chapter in enumerate(merged) if chapter.title == result.title),
        -1,
    )
    if existing_index > -1:
        merged[existing_index] = result
    else:
        merged.append(result)

    merged.sort(key=lambda chapter: outline.index_of(chapter.title))
    return tuple(merged)


def compute_progress(state: ManuscriptState) -> Progress:
    if state.outline is None:
        return Progress(written=0, total=0)
    outline_titles = set(state.outline.titles)
    written = sum(1 for chapter in state.chapters if chapter.title in outline_titles)
    return Progress(written=written, total=len(state.outline))


def orphan_chapters(state: ManuscriptState) -> Tuple[WrittenChapter, ...]:
    """Written chapters whose title does not match any outline stub."""

    if state.outline is None:
        return tuple(state.chapters)
    outline_titles = set(state.outline.titles)
    return tuple(chapter for chapter in state.chapters if chapter.title not in outline_titles)


def _copy_state(state: ManuscriptState) -> ManuscriptState:
    return replace(state, pending=set(state.pending))


class _SessionLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class ManuscriptStore:
    """Thread-safe home for every session's :class:`ManuscriptState`.

    A session's lock exists only while some caller holds or waits for it, so
    reads of unknown sessions and discarded sessions leave nothing behind.
    """

    def __init__(self) -> None:
        self._states: Dict[str, ManuscriptState] = {}
        self._locks: Dict[str, _SessionLock] = {}
        self._registry_lock = threading.Lock()

    def init_app(self, app) -> None:
        app.extensions["manuscripts"] = self

    @staticmethod
    def new_session_id() -> str:
        return uuid.uuid4().hex

    @contextmanager
    def _locked(self, session_id: str) -> Iterator[None]:
        with self._registry_lock:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = self._locks[session_id] = _SessionLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._registry_lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[session_id]

    def snapshot(self, session_id: str) -> ManuscriptState:
        """Return a copy of the session's state that callers may inspect freely."""

        with self._locked(session_id):
            state = self._states.get(session_id)
            return _copy_state(state) if state is not None else ManuscriptState()

    def update(self, session_id: str, mutator: Callable[[ManuscriptState], T]) -> T:
        """Apply ``mutator`` to a working copy and publish it if no error is raised."""

        with self._locked(session_id):
            current = self._states.get(session_id) or ManuscriptState()
            working = _copy_state(current)
            outcome = mutator(working)
            self._states[session_id] = working
            return outcome

    def discard(self, session_id: str) -> None:
        with self._locked(session_id):
            self._states.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._states

    def __len__(self) -> int:
        return len(self._states)
