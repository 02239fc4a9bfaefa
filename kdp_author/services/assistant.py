from __future__ import annotations

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

PROMPT_KEY = "writing_assistance"
MAX_MESSAGE_LENGTH = 8000


class WritingAssistanceError(GenerationError):
    """Raised when the writing assistant cannot answer."""


def assist_writing(text: str) -> str:
    """Answer an author's message or return an improved version of a passage."""

    message = (text or "").strip()
    if not message:
        raise WritingAssistanceError("Type a message or paste a passage for the assistant.")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise WritingAssistanceError(
            f"Messages are limited to {MAX_MESSAGE_LENGTH} characters."
        )

    try:
        config_entry = load_prompt_entry(PROMPT_KEY)
    except GenerationError as exc:
        raise WritingAssistanceError(str(exc)) from exc

    response_text = request_completion(
        _get_text_generator(),
        render_prompt(config_entry["prompt_template"], text=message),
        extract_generation_parameters(config_entry.get("parameters")),
        error_cls=WritingAssistanceError,
        action="asking the writing assistant",
    )

    # Plain prose is an acceptable answer when the model ignores the JSON request.
    data = parse_json_object(response_text)
    if data is None:
        return response_text
    enhanced = clean_text(data.get("enhancedText"))
    if not enhanced:
        raise WritingAssistanceError("The writing assistant returned an empty answer.")
    return enhanced
