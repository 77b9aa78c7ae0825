"""Export/import Whispers assistants as PNG cards.

A card is an ordinary 400x400 PNG (the assistant's avatar, or a generated
gradient placeholder) with a JSON record stored in a tEXt chunk under the
``whispers`` keyword. Two record shapes exist:

- assistant: ``{"name", "character", "bans", "avatar"}``
- folder: ``{"type": "folder", "name", "assistants": [assistant, ...]}``
"""

from __future__ import annotations

import base64
import binascii
import io
import json
import random
import string
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from PIL import Image, ImageDraw, ImageFont

from .png_chunks import embed, extract


DEFAULT_KEYWORD = "whispers"
CARD_SIZE = 400
GRADIENT_START = (0x66, 0x7E, 0xEA)
GRADIENT_END = (0x76, 0x4B, 0xA2)
SUBTITLE = "Whispers Assistant"
AVATAR_TIMEOUT = 30

LogFn = Optional[Callable[[str], None]]

_BASE36 = string.digits + string.ascii_lowercase


def _log(log_fn: LogFn, message: str) -> None:
    if log_fn:
        log_fn(message)


def _base36(value: int) -> str:
    if value <= 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_id() -> str:
    suffix = "".join(random.choice(_BASE36) for _ in range(6))
    return f"w_{_base36(int(time.time() * 1000))}_{suffix}"


# --- Records ---

def assistant_record(assistant: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": assistant.get("name"),
        "character": assistant.get("character"),
        "bans": assistant.get("bans"),
        "avatar": assistant.get("avatar") or None,
    }


def folder_record(name: str, assistants: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "type": "folder",
        "name": name,
        "assistants": [assistant_record(a) for a in assistants],
    }


def import_assistant(record: Dict[str, Any]) -> Dict[str, Any]:
    """Turn an exported record into a new stored assistant with a fresh id."""
    return {
        "id": generate_id(),
        "name": record.get("name") or "Imported Assistant",
        "character": record.get("character") or "",
        "bans": record.get("bans") or "",
        "avatar": record.get("avatar") or None,
    }


# --- Images ---

def load_avatar_bytes(src: str, timeout: int = AVATAR_TIMEOUT) -> bytes:
    """Read avatar bytes from a data: URL, an http(s) URL, or a file path."""
    value = (src or "").strip()
    if value.startswith("data:"):
        header, _, payload = value.partition(",")
        if ";base64" not in header:
            raise ValueError("Only base64 data URLs are supported")
        try:
            return base64.b64decode(payload, validate=False)
        except binascii.Error as exc:
            raise ValueError(f"Invalid base64 avatar data: {exc}") from exc
    if value.startswith(("http://", "https://")):
        response = requests.get(value, timeout=timeout)
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            body = response.text.strip()
            if len(body) > 500:
                body = body[:500] + "..."
            raise RuntimeError(f"{exc} | response={body}") from exc
        return response.content
    with open(value, "rb") as f:
        return f.read()


def _to_png_bytes(img: Image.Image) -> bytes:
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def _font(size: int, bold: bool = False):
    name = "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"
    try:
        return ImageFont.truetype(name, size)
    except OSError:
        return ImageFont.load_default(size=size)


def _draw_centered(draw: ImageDraw.ImageDraw, center: Tuple[int, int], text: str, font, fill) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = center[0] - (right - left) / 2 - left
    y = center[1] - (bottom - top) / 2 - top
    draw.text((x, y), text, font=font, fill=fill)


def render_placeholder_avatar(name: str, size: int = CARD_SIZE) -> bytes:
    """Diagonal gradient with the assistant name, as PNG bytes."""
    img = Image.new("RGBA", (size, size))
    draw = ImageDraw.Draw(img)
    steps = 2 * size - 1
    for s in range(steps):
        t = s / max(steps - 1, 1)
        color = tuple(round(a + (b - a) * t) for a, b in zip(GRADIENT_START, GRADIENT_END))
        start = (max(0, s - size + 1), min(s, size - 1))
        end = (min(s, size - 1), max(0, s - size + 1))
        draw.line([start, end], fill=color + (255,))

    scale = size / CARD_SIZE
    _draw_centered(
        draw, (size // 2, round(180 * scale)), name or "Assistant",
        _font(max(1, round(48 * scale)), bold=True), (255, 255, 255, 255),
    )
    overlay = Image.new("RGBA", img.size, (0, 0, 0, 0))
    _draw_centered(
        ImageDraw.Draw(overlay), (size // 2, round(240 * scale)), SUBTITLE,
        _font(max(1, round(24 * scale))), (255, 255, 255, 178),
    )
    img = Image.alpha_composite(img, overlay)
    return _to_png_bytes(img)


def render_avatar(src: str, size: int = CARD_SIZE, timeout: int = AVATAR_TIMEOUT) -> bytes:
    raw = load_avatar_bytes(src, timeout=timeout)
    img = Image.open(io.BytesIO(raw))
    img = img.convert("RGBA").resize((size, size), Image.Resampling.LANCZOS)
    return _to_png_bytes(img)


def card_base_image(assistant: Dict[str, Any], log_fn: LogFn = None) -> bytes:
    avatar = assistant.get("avatar")
    if avatar:
        try:
            return render_avatar(avatar)
        except (OSError, ValueError, RuntimeError, requests.RequestException) as exc:
            _log(log_fn, f"Avatar could not be loaded, using placeholder: {exc}")
    return render_placeholder_avatar(assistant.get("name") or "Assistant")


# --- Export / import ---

def _dump_record(record: Dict[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


def export_assistant_png(
    assistant: Dict[str, Any],
    keyword: str = DEFAULT_KEYWORD,
    log_fn: LogFn = None,
) -> bytes:
    """Render the assistant's card and embed its record. Returns PNG bytes."""
    png = card_base_image(assistant, log_fn=log_fn)
    return embed(png, keyword, _dump_record(assistant_record(assistant)))


def export_folder_png(
    name: str,
    assistants: List[Dict[str, Any]],
    keyword: str = DEFAULT_KEYWORD,
    log_fn: LogFn = None,
) -> bytes:
    png = card_base_image({"name": name}, log_fn=log_fn)
    return embed(png, keyword, _dump_record(folder_record(name, assistants)))


def read_card(png_bytes: bytes, keyword: str = DEFAULT_KEYWORD, log_fn: LogFn = None) -> Optional[Dict[str, Any]]:
    raw = extract(png_bytes, keyword)
    if not raw:
        _log(log_fn, "This PNG does not contain Whispers assistant data.")
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        _log(log_fn, "Failed to parse assistant data from PNG.")
        return None
    if not isinstance(data, dict):
        _log(log_fn, "Failed to parse assistant data from PNG.")
        return None
    return data


def import_card_png(
    png_bytes: bytes,
    keyword: str = DEFAULT_KEYWORD,
    log_fn: LogFn = None,
) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Return ("assistant" | "folder", new assistants), or (None, []) when nothing importable."""
    data = read_card(png_bytes, keyword=keyword, log_fn=log_fn)
    if data is None:
        return None, []
    if data.get("type") == "folder":
        members = data.get("assistants")
        if not isinstance(members, list):
            members = []
        return "folder", [import_assistant(m) for m in members if isinstance(m, dict)]
    return "assistant", [import_assistant(data)]
