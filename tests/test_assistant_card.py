from __future__ import annotations

import base64
import io
import json
import re

import pytest
import requests
from PIL import Image

from whispers import assistant_card
from whispers.assistant_card import (
    CARD_SIZE,
    assistant_record,
    export_assistant_png,
    export_folder_png,
    folder_record,
    generate_id,
    import_assistant,
    import_card_png,
    load_avatar_bytes,
    read_card,
    render_placeholder_avatar,
)
from whispers.png_chunks import embed, extract


ASSISTANT = {
    "id": "w_abc_123456",
    "name": "Mira",
    "character": "Dry humour, short answers",
    "bans": "No spoilers",
    "avatar": None,
}


def _data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


class _FakeResponse:
    def __init__(self, content: bytes, status: int = 200):
        self.content = content
        self.status_code = status
        self.text = content.decode("latin-1")

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


def test_generate_id_shape():
    ids = {generate_id() for _ in range(20)}
    assert len(ids) == 20
    assert all(re.fullmatch(r"w_[0-9a-z]+_[0-9a-z]{6}", i) for i in ids)


def test_assistant_record_fields():
    record = assistant_record(ASSISTANT)
    assert record == {
        "name": "Mira",
        "character": "Dry humour, short answers",
        "bans": "No spoilers",
        "avatar": None,
    }


def test_folder_record_shape():
    record = folder_record("Team", [ASSISTANT, {"name": "Bo"}])
    assert record["type"] == "folder"
    assert record["name"] == "Team"
    assert [a["name"] for a in record["assistants"]] == ["Mira", "Bo"]


def test_import_assistant_defaults():
    imported = import_assistant({})
    assert imported["name"] == "Imported Assistant"
    assert imported["character"] == ""
    assert imported["bans"] == ""
    assert imported["avatar"] is None
    assert imported["id"].startswith("w_")


def test_placeholder_avatar_is_square_png():
    png = render_placeholder_avatar("Mira")
    img = Image.open(io.BytesIO(png))
    assert img.format == "PNG"
    assert img.size == (CARD_SIZE, CARD_SIZE)
    corner = img.convert("RGB").getpixel((0, 0))
    assert corner == (0x66, 0x7E, 0xEA)


def test_export_assistant_round_trip():
    png = export_assistant_png(ASSISTANT)
    record = json.loads(extract(png, "whispers"))
    assert record == assistant_record(ASSISTANT)

    kind, assistants = import_card_png(png)
    assert kind == "assistant"
    assert len(assistants) == 1
    assert assistants[0]["name"] == "Mira"
    assert assistants[0]["bans"] == "No spoilers"
    assert assistants[0]["id"] != ASSISTANT["id"]


def test_export_uses_data_url_avatar():
    avatar = Image.new("RGB", (32, 16), (255, 0, 0))
    buf = io.BytesIO()
    avatar.save(buf, format="PNG")
    assistant = dict(ASSISTANT, avatar=_data_url(buf.getvalue()))

    png = export_assistant_png(assistant)
    img = Image.open(io.BytesIO(png))
    assert img.size == (CARD_SIZE, CARD_SIZE)
    assert img.convert("RGB").getpixel((200, 200)) == (255, 0, 0)
    assert json.loads(extract(png, "whispers"))["avatar"] == assistant["avatar"]


def test_export_fetches_http_avatar(monkeypatch):
    avatar = Image.new("RGB", (10, 10), (0, 0, 255))
    buf = io.BytesIO()
    avatar.save(buf, format="PNG")
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return _FakeResponse(buf.getvalue())

    monkeypatch.setattr(requests, "get", fake_get)
    png = export_assistant_png(dict(ASSISTANT, avatar="https://example.test/a.png"))
    assert calls == [("https://example.test/a.png", assistant_card.AVATAR_TIMEOUT)]
    assert Image.open(io.BytesIO(png)).convert("RGB").getpixel((5, 5)) == (0, 0, 255)


def test_http_avatar_error_is_runtime_error(monkeypatch):
    monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse(b"missing", status=404))
    with pytest.raises(RuntimeError, match="404"):
        load_avatar_bytes("http://example.test/missing.png")


def test_unloadable_avatar_falls_back_to_placeholder(tmp_path):
    messages = []
    assistant = dict(ASSISTANT, avatar=str(tmp_path / "nope.png"))
    png = export_assistant_png(assistant, log_fn=messages.append)
    assert Image.open(io.BytesIO(png)).convert("RGB").getpixel((0, 0)) == (0x66, 0x7E, 0xEA)
    assert len(messages) == 1
    assert "placeholder" in messages[0]


def test_data_url_without_base64_rejected():
    with pytest.raises(ValueError):
        load_avatar_bytes("data:text/plain,hello")


def test_folder_export_import():
    others = [ASSISTANT, {"name": "Bo", "character": "Cheerful", "bans": "", "avatar": None}]
    png = export_folder_png("Team", others)
    data = read_card(png)
    assert data["type"] == "folder"

    kind, assistants = import_card_png(png)
    assert kind == "folder"
    assert [a["name"] for a in assistants] == ["Mira", "Bo"]
    assert len({a["id"] for a in assistants}) == 2


def test_custom_keyword():
    png = export_assistant_png(ASSISTANT, keyword="wsp")
    assert extract(png, "whispers") is None
    kind, assistants = import_card_png(png, keyword="wsp")
    assert kind == "assistant"


def test_read_card_without_chunk(pillow_png):
    messages = []
    assert read_card(pillow_png, log_fn=messages.append) is None
    assert messages == ["This PNG does not contain Whispers assistant data."]
    assert import_card_png(pillow_png) == (None, [])


@pytest.mark.parametrize("payload", ["not json", "[1, 2]", '"text"'])
def test_read_card_rejects_non_object_payloads(pillow_png, payload):
    messages = []
    png = embed(pillow_png, "whispers", payload)
    assert read_card(png, log_fn=messages.append) is None
    assert messages == ["Failed to parse assistant data from PNG."]


def test_unicode_record_survives():
    assistant = dict(ASSISTANT, name="ミラ", character="Говорит кратко 🌙")
    png = export_assistant_png(assistant)
    kind, assistants = import_card_png(png)
    assert assistants[0]["name"] == "ミラ"
    assert assistants[0]["character"] == "Говорит кратко 🌙"


def test_placeholder_avatar_tiny_size():
    png = render_placeholder_avatar("Mira", size=1)
    img = Image.open(io.BytesIO(png))
    assert img.size == (1, 1)


def test_empty_embedded_text_counts_as_missing(pillow_png):
    messages = []
    png = embed(pillow_png, "whispers", "")
    assert read_card(png, log_fn=messages.append) is None
    assert messages == ["This PNG does not contain Whispers assistant data."]
