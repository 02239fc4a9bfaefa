import sys
import threading
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from kdp_author import create_app
from kdp_author.config import TestConfig
from kdp_author.manuscript import ManuscriptConflictError, ManuscriptStateError, ManuscriptStore
from kdp_author.models import BookSpec, Outline, WrittenChapter
from kdp_author.services import workflow
from kdp_author.services.chapters import ChapterGenerationError
from kdp_author.services.outline import OutlineGenerationError


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


BOOK = BookSpec(title="Tides", description="A coastal mystery.", details="A lighthouse keeper vanishes.")
OUTLINE_ENTRIES = [
    {"title": "Ch1", "description": "desc1"},
    {"title": "Ch2", "description": "desc2"},
    {"title": "Ch3", "description": "desc3"},
]


@pytest.fixture
def flow(monkeypatch, app_ctx):
    monkeypatch.setattr(workflow, "generate_outline", lambda book: Outline.from_entries(OUTLINE_ENTRIES))
    store = ManuscriptStore()
    return workflow.ManuscriptWorkflow(store, store.new_session_id())


def _echo_writer(calls=None):
    def fake_write_chapter(book, outline, target, previous):
        if calls is not None:
            calls.append((target.title, [chapter.title for chapter in previous]))
        return WrittenChapter(title=target.title, content=f"Content of {target.title}.")

    return fake_write_chapter


def test_start_outline_locks_the_book(flow):
    outline = flow.start_outline(BOOK)

    state = flow.state()
    assert state.book == BOOK
    assert state.outline is not None
    assert state.outline.titles == outline.titles
    assert state.is_locked
    assert not state.outline_pending


def test_second_outline_request_conflicts(flow):
    flow.start_outline(BOOK)

    with pytest.raises(ManuscriptConflictError):
        flow.start_outline(BookSpec(title="Other", description="d", details="x"))
    assert flow.state().book == BOOK


def test_failed_outline_returns_session_to_empty(monkeypatch, flow):
    def failing(book):
        raise OutlineGenerationError("model offline")

    monkeypatch.setattr(workflow, "generate_outline", failing)

    with pytest.raises(OutlineGenerationError):
        flow.start_outline(BOOK)

    state = flow.state()
    assert state.book is None
    assert state.outline is None
    assert not state.is_locked


def test_writing_before_outline_is_rejected(flow):
    with pytest.raises(ManuscriptStateError):
        flow.write(1)


def test_out_of_order_writes_are_sorted_with_progress(monkeypatch, flow):
    calls = []
    monkeypatch.setattr(workflow, "write_chapter", _echo_writer(calls))
    flow.start_outline(BOOK)

    progress = []
    for stub_id in (3, 1, 2):
        result = flow.write(stub_id)
        progress.append((result.progress.written, result.progress.total))

    assert progress == [(1, 3), (2, 3), (3, 3)]
    assert [chapter.title for chapter in flow.state().chapters] == ["Ch1", "Ch2", "Ch3"]
    # Each request sees what had been written at that moment, in outline order.
    assert calls == [("Ch3", []), ("Ch1", ["Ch3"]), ("Ch2", ["Ch1", "Ch3"])]


def test_rewriting_a_chapter_replaces_it(monkeypatch, flow):
    monkeypatch.setattr(workflow, "write_chapter", _echo_writer())
    flow.start_outline(BOOK)
    flow.write(1)
    flow.write(2)

    monkeypatch.setattr(
        workflow,
        "write_chapter",
        lambda book, outline, target, previous: WrittenChapter(title=target.title, content="Revised."),
    )
    result = flow.write(1)

    assert [chapter.title for chapter in result.chapters] == ["Ch1", "Ch2"]
    assert result.chapters[0].content == "Revised."
    assert result.progress.written == 2


def test_failed_write_leaves_manuscript_untouched(monkeypatch, flow):
    monkeypatch.setattr(workflow, "write_chapter", _echo_writer())
    flow.start_outline(BOOK)
    flow.write(1)
    before = flow.state()

    def failing(book, outline, target, previous):
        raise ChapterGenerationError("timeout")

    monkeypatch.setattr(workflow, "write_chapter", failing)
    with pytest.raises(ChapterGenerationError):
        flow.write(2)

    after = flow.state()
    assert after.chapters == before.chapters
    assert after.pending == set()

    monkeypatch.setattr(workflow, "write_chapter", _echo_writer())
    assert flow.write(2).progress.written == 2


def test_unknown_chapter_id(monkeypatch, flow):
    flow.start_outline(BOOK)

    with pytest.raises(workflow.UnknownChapterError):
        flow.write(42)


def test_pending_chapter_cannot_be_requested_twice(monkeypatch, flow):
    flow.start_outline(BOOK)
    entered = threading.Event()
    release = threading.Event()

    def slow_writer(book, outline, target, previous):
        entered.set()
        release.wait(timeout=5)
        return WrittenChapter(title=target.title, content="Slow.")

    monkeypatch.setattr(workflow, "write_chapter", slow_writer)
    flow_app = workflow.current_app._get_current_object()
    errors = []

    def background():
        with flow_app.app_context():
            try:
                flow.write(2)
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)

    thread = threading.Thread(target=background)
    thread.start()
    assert entered.wait(timeout=5)
    assert flow.state().pending == {2}

    with pytest.raises(ManuscriptConflictError):
        flow.write(2)

    release.set()
    thread.join(timeout=5)
    assert not errors
    assert flow.state().pending == set()
    assert [chapter.title for chapter in flow.state().chapters] == ["Ch2"]


def test_concurrent_writes_for_different_chapters_all_land(monkeypatch, flow, app_ctx):
    flow.start_outline(BOOK)
    start = threading.Barrier(3)

    def writer(book, outline, target, previous):
        start.wait(timeout=5)
        return WrittenChapter(title=target.title, content=f"{target.title} text.")

    monkeypatch.setattr(workflow, "write_chapter", writer)
    errors = []

    def background(stub_id):
        with app_ctx.app_context():
            try:
                flow.write(stub_id)
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                errors.append(exc)

    threads = [threading.Thread(target=background, args=(stub_id,)) for stub_id in (3, 2, 1)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert not errors
    state = flow.state()
    assert [chapter.title for chapter in state.chapters] == ["Ch1", "Ch2", "Ch3"]
    assert state.pending == set()


def test_title_mismatch_is_rebound_to_the_stub(monkeypatch, flow):
    monkeypatch.setattr(
        workflow,
        "write_chapter",
        lambda book, outline, target, previous: WrittenChapter(title="Chapter Two, Reimagined", content="Text."),
    )
    flow.start_outline(BOOK)

    result = flow.write(2)

    assert result.title_mismatch
    assert result.chapter.title == "Ch2"
    assert result.progress.written == 1


def test_title_mismatch_kept_as_orphan_when_not_enforced(monkeypatch, app_ctx):
    monkeypatch.setattr(workflow, "generate_outline", lambda book: Outline.from_entries(OUTLINE_ENTRIES))
    monkeypatch.setattr(workflow, "write_chapter", _echo_writer())
    store = ManuscriptStore()
    flow = workflow.ManuscriptWorkflow(store, store.new_session_id(), enforce_target_title=False)
    flow.start_outline(BOOK)
    flow.write(3)

    monkeypatch.setattr(
        workflow,
        "write_chapter",
        lambda book, outline, target, previous: WrittenChapter(title="Chapter Two, Reimagined", content="Text."),
    )
    result = flow.write(2)

    assert result.title_mismatch
    assert [chapter.title for chapter in result.chapters] == ["Chapter Two, Reimagined", "Ch3"]
    assert result.progress.written == 1


def test_result_after_reset_is_discarded(monkeypatch, flow):
    flow.start_outline(BOOK)

    def writer_that_resets(book, outline, target, previous):
        flow.reset()
        return WrittenChapter(title=target.title, content="Late.")

    monkeypatch.setattr(workflow, "write_chapter", writer_that_resets)

    with pytest.raises(ManuscriptConflictError):
        flow.write(1)

    state = flow.state()
    assert state.outline is None
    assert state.chapters == ()


def test_stale_outline_does_not_replace_a_resubmitted_one(monkeypatch, flow, app_ctx):
    second_started = threading.Event()
    release_second = threading.Event()
    calls = []
    results = {}

    def second_request():
        with app_ctx.app_context():
            results["outline"] = flow.start_outline(BOOK)

    worker = threading.Thread(target=second_request)

    def fake_generate_outline(book):
        calls.append(book)
        if len(calls) == 1:
            flow.reset()
            worker.start()
            assert second_started.wait(timeout=5)
            return Outline.from_entries([{"title": "Stale", "description": ""}])
        second_started.set()
        release_second.wait(timeout=5)
        return Outline.from_entries(OUTLINE_ENTRIES)

    monkeypatch.setattr(workflow, "generate_outline", fake_generate_outline)

    with pytest.raises(ManuscriptConflictError):
        flow.start_outline(BOOK)
    assert flow.state().outline_pending

    release_second.set()
    worker.join(timeout=5)

    assert results["outline"].titles == ["Ch1", "Ch2", "Ch3"]
    state = flow.state()
    assert state.outline.titles == ["Ch1", "Ch2", "Ch3"]
    assert not state.outline_pending


def test_failed_stale_outline_leaves_resubmission_pending(monkeypatch, flow):
    def resubmit(state):
        state.book = BOOK
        state.outline_pending = True
        state.outline_request = "another-request"

    def fake_generate_outline(book):
        flow.reset()
        flow.store.update(flow.session_id, resubmit)
        raise OutlineGenerationError("late failure")

    monkeypatch.setattr(workflow, "generate_outline", fake_generate_outline)

    with pytest.raises(OutlineGenerationError):
        flow.start_outline(BOOK)

    state = flow.state()
    assert state.book == BOOK
    assert state.outline_pending
