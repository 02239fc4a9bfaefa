import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from kdp_author import create_app
from kdp_author.config import TestConfig
from kdp_author.services import generation


OUTLINE_PAYLOAD = {
    "chapters": [
        {"title": "Ch1", "description": "desc1"},
        {"title": "Ch2", "description": "desc2"},
        {"title": "Ch3", "description": "desc3"},
    ]
}


class ScriptedGenerator:
    """Answers each prompt family with a canned JSON payload."""

    def __init__(self):
        self.prompts = []
        self.fail_chapters = False

    def generate_response(self, prompt: str, **_: object) -> str:
        self.prompts.append(prompt)
        if "chapter-by-chapter outline" in prompt:
            return json.dumps(OUTLINE_PAYLOAD)
        if "Chapter to write:" in prompt:
            if self.fail_chapters:
                raise TimeoutError("upstream timed out")
            for entry in OUTLINE_PAYLOAD["chapters"]:
                if f'Chapter to write: "{entry["title"]}"' in prompt:
                    return json.dumps({"title": entry["title"], "content": f"Text of {entry['title']}."})
        if "write every chapter of the book" in prompt:
            return json.dumps(
                {
                    "chapters": [
                        {"title": "Opening", "content": "It starts."},
                        {"title": "Closing", "content": "It ends."},
                    ]
                }
            )
        if "book title generator" in prompt:
            return json.dumps({"title": "Echoes of the Tide"})
        if "writing assistant" in prompt:
            return json.dumps({"enhancedText": "Try opening with the storm."})
        return "{}"


@pytest.fixture
def app_instance():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    ctx.pop()


@pytest.fixture
def generator(app_instance):
    scripted = ScriptedGenerator()
    app_instance.config[generation.GENERATOR_CACHE_KEY] = scripted
    return scripted


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()


BOOK_FORM = {
    "title": "The Last Starlight!",
    "description": "A tale of a dying star.",
    "details": "A young astronomer discovers the star is a message.",
}


def _generate_outline(client):
    return client.post("/editor/outline", data=BOOK_FORM, follow_redirects=True)


def test_landing_page_links_to_editor(client):
    response = client.get("/")

    assert response.status_code == 200
    assert b"/editor" in response.data


def test_missing_details_never_calls_the_generator(client, generator):
    response = client.post(
        "/editor/outline",
        data={**BOOK_FORM, "details": ""},
        follow_redirects=True,
    )

    assert b"Missing Information" in response.data
    assert generator.prompts == []
    assert client.get("/editor/state").get_json()["book"] is None


def test_whitespace_only_field_is_rejected(client, generator):
    response = client.post(
        "/editor/outline",
        data={**BOOK_FORM, "description": "   "},
        follow_redirects=True,
    )

    assert b"Missing Information" in response.data
    assert generator.prompts == []


def test_outline_flow_locks_the_form(client, generator):
    response = _generate_outline(client)

    assert b"Outline Generated! 3 chapters are ready" in response.data
    assert b"desc2" in response.data

    state = client.get("/editor/state").get_json()
    assert [stub["title"] for stub in state["outline"]] == ["Ch1", "Ch2", "Ch3"]
    assert [stub["id"] for stub in state["outline"]] == [1, 2, 3]
    assert state["book"]["title"] == "The Last Starlight!"
    assert state["progress"] == {"written": 0, "total": 3, "complete": False}

    second = client.post(
        "/editor/outline",
        data={**BOOK_FORM, "title": "Another Book"},
        follow_redirects=True,
    )
    assert b"already has an outline" in second.data
    assert client.get("/editor/state").get_json()["book"]["title"] == "The Last Starlight!"


def test_outline_failure_is_reported(client, app_instance):
    app_instance.config[generation.GENERATOR_CACHE_KEY] = None

    response = _generate_outline(client)

    assert b"Error Generating Outline" in response.data
    state = client.get("/editor/state").get_json()
    assert state["book"] is None
    assert state["outline"] is None


def test_write_chapters_out_of_order(client, generator):
    _generate_outline(client)

    first = client.post("/editor/chapters/3")
    assert first.status_code == 200
    body = first.get_json()
    assert body["chapter"] == {"id": 3, "title": "Ch3", "content": "Text of Ch3."}
    assert body["progress"]["written"] == 1
    assert body["title_mismatch"] is False

    client.post("/editor/chapters/1")
    last = client.post("/editor/chapters/2").get_json()

    assert [chapter["title"] for chapter in last["chapters"]] == ["Ch1", "Ch2", "Ch3"]
    assert last["progress"] == {"written": 3, "total": 3, "complete": True}


def test_write_chapter_before_outline(client, generator):
    response = client.post("/editor/chapters/1")

    assert response.status_code == 400
    assert "error" in response.get_json()


def test_write_unknown_chapter(client, generator):
    _generate_outline(client)

    response = client.post("/editor/chapters/9")

    assert response.status_code == 404


def test_write_chapter_failure_keeps_manuscript(client, generator):
    _generate_outline(client)
    client.post("/editor/chapters/1")
    generator.fail_chapters = True

    response = client.post("/editor/chapters/2")

    assert response.status_code == 502
    assert response.get_json()["error"].startswith("Error Writing Chapter")
    state = client.get("/editor/state").get_json()
    assert [chapter["title"] for chapter in state["chapters"]] == ["Ch1"]
    assert state["pending"] == []


def test_download_builds_text_file(client, generator):
    _generate_outline(client)
    client.post("/editor/chapters/2")
    client.post("/editor/chapters/1")

    response = client.get("/editor/download")

    assert response.status_code == 200
    assert response.mimetype == "text/plain"
    assert response.headers["Content-Disposition"] == 'attachment; filename="the_last_starlight_.txt"'
    assert response.get_data(as_text=True) == (
        "# The Last Starlight!\n\n## Ch1\n\nText of Ch1.\n\n\n## Ch2\n\nText of Ch2."
    )


def test_download_without_chapters_redirects(client, generator):
    _generate_outline(client)

    response = client.get("/editor/download", follow_redirects=True)

    assert response.status_code == 200
    assert b"No chapters have been written yet." in response.data


def test_reset_clears_the_manuscript(client, generator):
    _generate_outline(client)
    client.post("/editor/chapters/1")

    response = client.post("/editor/reset", follow_redirects=True)

    assert b"The manuscript has been cleared" in response.data
    state = client.get("/editor/state").get_json()
    assert state["book"] is None
    assert state["chapters"] == []

    again = _generate_outline(client)
    assert b"Outline Generated!" in again.data


def test_generate_full_book(client, generator):
    response = client.post("/editor/book", json=BOOK_FORM)

    assert response.status_code == 200
    body = response.get_json()
    assert [chapter["title"] for chapter in body["chapters"]] == ["Opening", "Closing"]
    assert body["filename"] == "the_last_starlight_.txt"
    assert body["text"].startswith("# The Last Starlight!\n\n## Opening")
    assert client.get("/editor/state").get_json()["chapters"] == []


def test_generate_full_book_requires_all_fields(client, generator):
    response = client.post("/editor/book", json={**BOOK_FORM, "details": ""})

    assert response.status_code == 400
    assert generator.prompts == []


def test_suggest_title(client, generator):
    response = client.post("/editor/title", json={"description": "A lighthouse mystery."})

    assert response.status_code == 200
    assert response.get_json() == {"title": "Echoes of the Tide"}


def test_suggest_title_requires_description(client, generator):
    response = client.post("/editor/title", json={"description": " "})

    assert response.status_code == 400


def test_writing_assistant(client, generator):
    response = client.post("/editor/assistant", json={"text": "How should chapter one open?"})

    assert response.status_code == 200
    assert response.get_json() == {"enhancedText": "Try opening with the storm."}


def test_writing_assistant_rejects_empty_message(client, generator):
    response = client.post("/editor/assistant", json={"text": ""})

    assert response.status_code == 400
    assert generator.prompts == []
