"""Settings record, .env loading, and JSON persistence.

Settings are a versioned dict. Loading never fails: a missing or corrupt
file yields defaults, and keys missing from an older file are filled in
from ``DEFAULT_SETTINGS`` while unknown keys are kept as-is.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
from typing import Any, Dict, List, Optional


SETTINGS_VERSION = 1

DEFAULT_PROMPT_TEMPLATE = """You are a personal assistant in a chat application. Respond concisely and helpfully. Format your response as plain text.

Your identity:
Name — {{name}}
Character — {{character}}
Bans — {{bans}}

Conversation context (last messages from the main chat):
{{context}}

Now respond to the user's message in the assistant chat."""

DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "enabled": True,
    "assistants": [],
    "extra_api_url": "",
    "message_limit": 20,
    "global_assistant_id": "",
    "character_bindings": {},
    "use_extra_api": False,
    "main_prompt_template": DEFAULT_PROMPT_TEMPLATE,
    "png_keyword": "whispers",
}


def load_dotenv_file(path: str = ".env") -> None:
    if not os.path.isfile(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as f:
            for raw in f:
                line = raw.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip("\"'").strip()
                if key and key not in os.environ:
                    os.environ[key] = value
    except OSError:
        pass


def settings_store_path(path: str = "") -> str:
    if path:
        return path
    return os.environ.get("WHISPERS_SETTINGS", "") or os.path.join("config", "whispers_settings.json")


# --- Coercion helpers ---

def state_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def state_str(value: Any, default: str = "") -> str:
    return str(value).strip() if value else default


def state_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def merge_defaults(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Fill missing keys from defaults and normalise known ones."""
    merged: Dict[str, Any] = dict(data) if isinstance(data, dict) else {}
    for key, default in DEFAULT_SETTINGS.items():
        if key not in merged:
            merged[key] = copy.deepcopy(default)

    merged["enabled"] = state_bool(merged["enabled"], DEFAULT_SETTINGS["enabled"])
    merged["use_extra_api"] = state_bool(merged["use_extra_api"], DEFAULT_SETTINGS["use_extra_api"])
    merged["message_limit"] = max(1, state_int(merged["message_limit"], DEFAULT_SETTINGS["message_limit"]))
    merged["extra_api_url"] = state_str(merged["extra_api_url"])
    merged["global_assistant_id"] = state_str(merged["global_assistant_id"])
    merged["png_keyword"] = state_str(merged["png_keyword"], DEFAULT_SETTINGS["png_keyword"])
    if not isinstance(merged["main_prompt_template"], str) or not merged["main_prompt_template"].strip():
        merged["main_prompt_template"] = DEFAULT_PROMPT_TEMPLATE
    if not isinstance(merged["assistants"], list):
        merged["assistants"] = []
    merged["assistants"] = [a for a in merged["assistants"] if isinstance(a, dict)]
    if not isinstance(merged["character_bindings"], dict):
        merged["character_bindings"] = {}
    merged["version"] = SETTINGS_VERSION
    return merged


def load_settings(path: str = "") -> Dict[str, Any]:
    store = settings_store_path(path)
    if not os.path.isfile(store):
        return merge_defaults({})
    try:
        with open(store, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return merge_defaults({})
    return merge_defaults(data if isinstance(data, dict) else {})


def save_settings(settings: Dict[str, Any], path: str = "") -> str:
    """Atomic write of settings to disk. Returns the path written."""
    store = settings_store_path(path)
    parent = os.path.dirname(store) or "."
    os.makedirs(parent, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(merge_defaults(settings), f, ensure_ascii=False, indent=2)
        os.replace(tmp, store)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
    return store


# --- Assistant list ---

def find_assistant(settings: Dict[str, Any], id_or_name: str) -> Optional[Dict[str, Any]]:
    key = (id_or_name or "").strip()
    if not key:
        return None
    assistants: List[Dict[str, Any]] = settings.get("assistants") or []
    for assistant in assistants:
        if assistant.get("id") == key:
            return assistant
    for assistant in assistants:
        if (assistant.get("name") or "").strip() == key:
            return assistant
    return None


def _assistant_by_id(settings: Dict[str, Any], assistant_id: str) -> Optional[Dict[str, Any]]:
    if not assistant_id:
        return None
    for assistant in settings.get("assistants") or []:
        if assistant.get("id") == assistant_id:
            return assistant
    return None


def resolve_assistant(
    settings: Dict[str, Any],
    character_name: Optional[str] = None,
    chat_assistant_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Pick the active assistant: chat binding, then character binding, then global, then first."""
    found = _assistant_by_id(settings, state_str(chat_assistant_id))
    if found:
        return found

    bindings = settings.get("character_bindings") or {}
    if character_name and isinstance(bindings, dict):
        found = _assistant_by_id(settings, state_str(bindings.get(character_name)))
        if found:
            return found

    found = _assistant_by_id(settings, state_str(settings.get("global_assistant_id")))
    if found:
        return found

    assistants = settings.get("assistants") or []
    return assistants[0] if assistants else None


def add_assistant(settings: Dict[str, Any], assistant: Dict[str, Any]) -> None:
    settings.setdefault("assistants", []).append(assistant)
