from __future__ import annotations

from typing import Any, Dict

from flask import (
    Response,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from text_exporter import TextExportError, manuscript_filename, render_manuscript_text

from ..extensions import manuscripts
from ..manuscript import ManuscriptConflictError, ManuscriptStateError, compute_progress, orphan_chapters
from ..models import BookSpec, BookSpecValidationError, ManuscriptState, validate_book_spec
from ..services.assistant import MAX_MESSAGE_LENGTH, WritingAssistanceError, assist_writing
from ..services.book import BookGenerationError, generate_book
from ..services.chapters import ChapterGenerationError
from ..services.outline import OutlineGenerationError
from ..services.titles import TitleGenerationError, generate_book_title
from ..services.workflow import ManuscriptWorkflow, UnknownChapterError
from . import bp
from .forms import BookSpecForm

SESSION_KEY = "manuscript_id"


def _session_id() -> str:
    session_id = session.get(SESSION_KEY)
    if not session_id:
        session_id = manuscripts.new_session_id()
        session[SESSION_KEY] = session_id
    return session_id


def _workflow() -> ManuscriptWorkflow:
    return ManuscriptWorkflow(
        manuscripts,
        _session_id(),
        enforce_target_title=bool(current_app.config.get("ENFORCE_TARGET_TITLE", True)),
    )


def _state_payload(state: ManuscriptState) -> Dict[str, Any]:
    payload = state.to_dict()
    payload["progress"] = compute_progress(state).to_dict()
    payload["orphans"] = [chapter.title for chapter in orphan_chapters(state)] if state.outline else []
    return payload


def _json_book_spec(payload: Dict[str, Any]) -> BookSpec:
    return validate_book_spec(
        BookSpec(
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            details=str(payload.get("details") or ""),
        )
    )


@bp.route("", methods=["GET"])
def editor():
    state = _workflow().state()
    form = BookSpecForm()
    if state.book is not None:
        form.title.data = state.book.title
        form.description.data = state.book.description
        form.details.data = state.book.details

    written = {chapter.title: chapter for chapter in state.chapters}
    return render_template(
        "editor/editor.html",
        form=form,
        state=state,
        written=written,
        orphans=orphan_chapters(state) if state.outline else (),
        progress=compute_progress(state),
        form_locked=state.is_locked,
    )


@bp.route("/outline", methods=["POST"])
def generate_outline():
    form = BookSpecForm()
    if not form.validate_on_submit():
        flash("Missing Information: Please fill out all fields to generate the outline.", "danger")
        for errors in form.errors.values():
            for error in errors:
                flash(error, "danger")
        return redirect(url_for("editor.editor"))

    try:
        book = validate_book_spec(
            BookSpec(
                title=form.title.data,
                description=form.description.data,
                details=form.details.data,
            )
        )
    except BookSpecValidationError as exc:
        flash(f"Missing Information: {exc}", "danger")
        return redirect(url_for("editor.editor"))

    try:
        outline = _workflow().start_outline(book)
    except ManuscriptConflictError as exc:
        flash(str(exc), "warning")
    except OutlineGenerationError as exc:
        flash(f"Error Generating Outline: {exc}", "danger")
    except Exception:  # pragma: no cover - unexpected failures are logged
        current_app.logger.exception("Unexpected error while generating the outline")
        flash("Error Generating Outline: An unexpected error occurred. Please try again.", "danger")
    else:
        flash(
            f"Outline Generated! {len(outline)} chapters are ready. You can now write each chapter.",
            "success",
        )

    return redirect(url_for("editor.editor"))


@bp.route("/chapters/<int:chapter_id>", methods=["POST"])
def write_chapter(chapter_id: int):
    try:
        result = _workflow().write(chapter_id)
    except UnknownChapterError as exc:
        return jsonify({"error": str(exc)}), 404
    except ManuscriptConflictError as exc:
        return jsonify({"error": str(exc)}), 409
    except ManuscriptStateError as exc:
        return jsonify({"error": str(exc)}), 400
    except ChapterGenerationError as exc:
        return jsonify({"error": f"Error Writing Chapter: {exc}"}), 502
    except Exception:  # pragma: no cover - unexpected failures are logged
        current_app.logger.exception("Unexpected error while writing chapter %s", chapter_id)
        return jsonify({"error": "Error Writing Chapter: An unexpected error occurred. Please try again."}), 500

    return jsonify(
        {
            "chapter": {"id": result.stub.id, **result.chapter.to_payload()},
            "chapters": [chapter.to_payload() for chapter in result.chapters],
            "progress": result.progress.to_dict(),
            "title_mismatch": result.title_mismatch,
            "message": f'Chapter "{result.chapter.title}" Written! The chapter has been added to your manuscript.',
        }
    )


@bp.route("/state", methods=["GET"])
def state():
    return jsonify(_state_payload(_workflow().state()))


@bp.route("/download", methods=["GET"])
def download():
    state = _workflow().state()
    if state.book is None or not state.chapters:
        flash("No chapters have been written yet.", "info")
        return redirect(url_for("editor.editor"))

    try:
        text_blob = render_manuscript_text(state.book.title, state.chapters)
        filename = manuscript_filename(state.book.title)
    except TextExportError as exc:
        flash(str(exc), "danger")
        return redirect(url_for("editor.editor"))

    return Response(
        text_blob,
        mimetype="text/plain",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.route("/book", methods=["POST"])
def generate_full_book():
    payload = request.get_json(silent=True) or {}
    try:
        book = _json_book_spec(payload)
    except BookSpecValidationError as exc:
        return jsonify({"error": str(exc)}), 400

    try:
        chapters = generate_book(book)
    except BookGenerationError as exc:
        return jsonify({"error": f"Error Generating Book: {exc}"}), 502

    return jsonify(
        {
            "chapters": [chapter.to_payload() for chapter in chapters],
            "text": render_manuscript_text(book.title, chapters),
            "filename": manuscript_filename(book.title),
        }
    )


@bp.route("/title", methods=["POST"])
def suggest_title():
    payload = request.get_json(silent=True) or {}
    description = str(payload.get("description") or "").strip()
    if not description:
        return jsonify({"error": "Add a short description so a title can be suggested."}), 400

    try:
        title = generate_book_title(description)
    except TitleGenerationError as exc:
        return jsonify({"error": str(exc)}), 502

    return jsonify({"title": title})


@bp.route("/assistant", methods=["POST"])
def writing_assistant():
    payload = request.get_json(silent=True) or {}
    text = str(payload.get("text") or "").strip()
    if not text:
        return jsonify({"error": "Type a message for the writing assistant."}), 400
    if len(text) > MAX_MESSAGE_LENGTH:
        return jsonify({"error": f"Messages are limited to {MAX_MESSAGE_LENGTH} characters."}), 400

    try:
        enhanced = assist_writing(text)
    except WritingAssistanceError as exc:
        return jsonify({"error": str(exc)}), 502

    return jsonify({"enhancedText": enhanced})


@bp.route("/reset", methods=["POST"])
def reset():
    _workflow().reset()
    flash("The manuscript has been cleared. Start a new book whenever you are ready.", "info")
    return redirect(url_for("editor.editor"))
