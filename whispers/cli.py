"""Command line interface for the Whispers PNG toolkit.

Usage:
    python -m whispers.cli <command> [options]
    whispers <command> [options]          # if installed via pyproject.toml

Commands:
    embed      Store text in a PNG under a tEXt keyword
    extract    Print the text stored under a keyword
    inspect    List chunks, CRC status and tEXt entries of a PNG
    export     Write an assistant (or a folder of all assistants) as a PNG card
    import     Read assistant(s) from a PNG card, optionally saving them
    settings   Show the current settings
"""

from __future__ import annotations

import argparse
import json
import os
from typing import List


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _write_file(path: str, data: bytes) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def _cmd_embed(args: argparse.Namespace) -> int:
    from .png_chunks import PngFormatError, embed

    if not os.path.isfile(args.input):
        print(f"Error: file not found: {args.input}")
        return 1
    if args.text_file:
        try:
            with open(args.text_file, "r", encoding="utf-8") as f:
                text = f.read()
        except UnicodeDecodeError as exc:
            print(f"Error: {args.text_file} is not valid UTF-8: {exc}")
            return 1
    elif args.text is not None:
        text = args.text
    else:
        print("Error: one of --text or --text-file is required")
        return 1

    try:
        out = embed(_read_file(args.input), args.keyword, text, strict=args.strict)
    except PngFormatError as exc:
        print(f"Error: {exc}")
        return 1
    output = args.output or args.input
    _write_file(output, out)
    print(f"Embedded {len(text.encode('utf-8'))} bytes under '{args.keyword}' -> {output}")
    return 0


def _cmd_extract(args: argparse.Namespace) -> int:
    from .png_chunks import extract

    if not os.path.isfile(args.input):
        print(f"Error: file not found: {args.input}")
        return 1
    text = extract(_read_file(args.input), args.keyword)
    if text is None:
        print(f"No tEXt chunk with keyword '{args.keyword}'")
        return 1
    if args.json:
        try:
            print(json.dumps(json.loads(text), ensure_ascii=False, indent=2))
        except json.JSONDecodeError:
            print(f"Error: text under '{args.keyword}' is not valid JSON")
            return 1
        return 0
    print(text)
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    from .png_chunks import PNG_SIGNATURE, TEXT_CHUNK, chunk_crc_ok, iter_chunks, split_text_payload

    if not os.path.isfile(args.input):
        print(f"Error: file not found: {args.input}")
        return 1
    png = _read_file(args.input)
    if not png.startswith(PNG_SIGNATURE):
        print("Warning: missing PNG signature")

    count = 0
    for chunk in iter_chunks(png):
        count += 1
        status = "ok" if chunk_crc_ok(chunk) else "BAD CRC"
        name = chunk.type.decode("latin-1")
        print(f"  {chunk.offset:>10}  {name}  length={chunk.length}  crc={chunk.crc:08x} ({status})")
        if chunk.type == TEXT_CHUNK:
            pair = split_text_payload(chunk.data)
            if pair:
                keyword, text = pair
                preview = text if len(text) <= 80 else text[:80] + "..."
                print(f"              {keyword}: {preview}")
    print(f"{count} chunks, {len(png)} bytes")
    return 0


def _card_filename(name: str, fallback: str) -> str:
    """Bare ``<name>.png`` in the working directory; path components are dropped."""
    base = os.path.basename((name or "").replace("\\", "/")).strip()
    base = base.lstrip(".").strip()
    return f"{base or fallback}.png"


def _cmd_export(args: argparse.Namespace) -> int:
    from .assistant_card import export_assistant_png, export_folder_png
    from .config import find_assistant, load_settings, resolve_assistant

    settings = load_settings(args.settings)
    keyword = args.keyword or settings["png_keyword"]
    log_fn = lambda m: print(f"  {m}")

    if args.folder:
        assistants = settings["assistants"]
        if not assistants:
            print("No assistants configured.")
            return 1
        out = export_folder_png(args.folder, assistants, keyword=keyword, log_fn=log_fn)
        label = f"folder '{args.folder}' ({len(assistants)} assistants)"
        default_name = _card_filename(args.folder, "folder")
    else:
        if args.assistant:
            assistant = find_assistant(settings, args.assistant)
        else:
            assistant = resolve_assistant(
                settings,
                character_name=args.character or None,
                chat_assistant_id=args.chat_assistant_id or None,
            )
        if not assistant:
            print(f"Assistant not found: {args.assistant or '(no active assistant)'}")
            return 1
        out = export_assistant_png(assistant, keyword=keyword, log_fn=log_fn)
        label = f"assistant '{assistant.get('name')}'"
        default_name = _card_filename(assistant.get("name"), "assistant")

    output = args.output or default_name
    _write_file(output, out)
    print(f"Exported {label} -> {output}")
    return 0


def _cmd_import(args: argparse.Namespace) -> int:
    from .assistant_card import import_card_png
    from .config import add_assistant, load_settings, save_settings

    if not os.path.isfile(args.input):
        print(f"Error: file not found: {args.input}")
        return 1
    settings = load_settings(args.settings)
    keyword = args.keyword or settings["png_keyword"]
    kind, assistants = import_card_png(_read_file(args.input), keyword=keyword, log_fn=lambda m: print(f"  {m}"))
    if kind is None:
        return 1

    print(json.dumps({"type": kind, "assistants": assistants}, ensure_ascii=False, indent=2))
    if args.save:
        for assistant in assistants:
            add_assistant(settings, assistant)
        path = save_settings(settings, args.settings)
        print(f"Saved {len(assistants)} assistant(s) to {path}")
    return 0


def _cmd_settings(args: argparse.Namespace) -> int:
    from .config import load_settings, settings_store_path

    if args.action == "show":
        print(f"# {settings_store_path(args.settings)}")
        print(json.dumps(load_settings(args.settings), ensure_ascii=False, indent=2))
        return 0

    print(f"Unknown action: {args.action}")
    return 1


def main(argv: List[str] | None = None) -> int:
    from .config import load_dotenv_file

    load_dotenv_file()

    parser = argparse.ArgumentParser(
        prog="whispers",
        description="Whispers PNG toolkit",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # embed
    p_embed = subparsers.add_parser("embed", help="Store text in a PNG tEXt chunk")
    p_embed.add_argument("--input", required=True, help="Source PNG")
    p_embed.add_argument("--output", default="", help="Destination PNG (defaults to overwriting --input)")
    p_embed.add_argument("--keyword", default="whispers")
    p_embed.add_argument("--text", default=None)
    p_embed.add_argument("--text-file", default="")
    p_embed.add_argument("--strict", action="store_true", help="Fail instead of guessing when IEND is missing")

    # extract
    p_extract = subparsers.add_parser("extract", help="Print text stored under a keyword")
    p_extract.add_argument("--input", required=True)
    p_extract.add_argument("--keyword", default="whispers")
    p_extract.add_argument("--json", action="store_true", help="Pretty-print the text as JSON")

    # inspect
    p_inspect = subparsers.add_parser("inspect", help="List chunks of a PNG")
    p_inspect.add_argument("--input", required=True)

    # export
    p_export = subparsers.add_parser("export", help="Export an assistant or folder as a PNG card")
    target = p_export.add_mutually_exclusive_group()
    target.add_argument("--assistant", default="", help="Assistant id or name (default: the active assistant)")
    target.add_argument("--folder", default="", help="Folder name; exports every stored assistant")
    p_export.add_argument("--character", default="", help="Character name used to pick the active assistant")
    p_export.add_argument("--chat-assistant-id", default="", help="Assistant id bound to the current chat")
    p_export.add_argument("--output", default="")
    p_export.add_argument("--keyword", default="")
    p_export.add_argument("--settings", default="", help="Settings file path")

    # import
    p_import = subparsers.add_parser("import", help="Import assistant(s) from a PNG card")
    p_import.add_argument("--input", required=True)
    p_import.add_argument("--keyword", default="")
    p_import.add_argument("--save", action="store_true", help="Append imported assistants to settings")
    p_import.add_argument("--settings", default="", help="Settings file path")

    # settings
    p_settings = subparsers.add_parser("settings", help="Inspect settings")
    p_settings.add_argument("action", choices=["show"])
    p_settings.add_argument("--settings", default="", help="Settings file path")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "embed": _cmd_embed,
        "extract": _cmd_extract,
        "inspect": _cmd_inspect,
        "export": _cmd_export,
        "import": _cmd_import,
        "settings": _cmd_settings,
    }
    handler = commands.get(args.command)
    if not handler:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except OSError as exc:
        print(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
