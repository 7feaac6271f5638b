#!/usr/bin/env python3
"""
Patch a Klipper config from a local file or a board sample config.

Settings come from the saved session state in --state-dir; --set overrides
single form fields for this run (and --save-state keeps them).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from cfgpatch.generator.generator import ConfigDocument, ConfigGenerator
from cfgpatch.generator.sources import (
    DocumentSourceError,
    GitHubConfigSource,
    filter_boards,
    load_file,
)
from cfgpatch.logging_config import setup_logging
from cfgpatch.wizard.settings import FORM_FALLBACKS
from cfgpatch.wizard.state import WizardState


def parse_override(text: str):
    """'printer.bed_x=300' -> ('printer.bed_x', 300)."""
    key, sep, raw = text.partition("=")
    key = key.strip()
    if not sep or key not in FORM_FALLBACKS:
        raise argparse.ArgumentTypeError(
            f"expected KEY=VALUE with KEY one of: {', '.join(sorted(FORM_FALLBACKS))}"
        )
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw.strip()
    return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Patch a Klipper config against the saved settings")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("config", nargs="?", help="Path to a .cfg file")
    source.add_argument("--board", help="Board sample config to fetch (file name)")
    source.add_argument("--list-boards", nargs="?", const="", metavar="QUERY",
                        help="List board sample configs (optionally filtered) and exit")
    parser.add_argument("--state-dir", help="Directory containing .cfgpatch_state.json")
    parser.add_argument("--out", help="Output file (default: printer.cfg in the state dir)")
    parser.add_argument("--stdout", action="store_true", help="Print the patched config instead of writing it")
    parser.add_argument("--preview", action="store_true", help="Print a preview with warnings")
    parser.add_argument("--set", dest="overrides", action="append", default=[], type=parse_override,
                        metavar="KEY=VALUE", help="Override a settings field (repeatable)")
    parser.add_argument("--save-state", action="store_true", help="Persist --set overrides")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    source = GitHubConfigSource()
    try:
        if args.list_boards is not None:
            for board in filter_boards(source.list_boards(), args.list_boards):
                print(f"{board.file_name:50s} {board.display_name}")
            return 0

        if args.board:
            file_name = args.board
            text = source.fetch(file_name)
        else:
            path = Path(args.config)
            file_name = path.name
            text = load_file(path)
    except DocumentSourceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    state_dir = Path(args.state_dir).expanduser().resolve() if args.state_dir else None
    state = WizardState(state_dir=state_dir)
    if state.get("session.file_name") != file_name:
        state.start_document(file_name)
    state.update_form(dict(args.overrides))
    if args.save_state:
        state.save()

    document = ConfigDocument.from_text(text, file_name=file_name)
    gen = ConfigGenerator(document, state=state, output_dir=state.state_dir)

    try:
        if args.preview:
            print(gen.preview())
            return 0

        result = gen.generate()
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    # Warnings were already logged to stderr by the generator
    if args.stdout:
        sys.stdout.write(result.text)
        return 0

    path = gen.write(result, Path(args.out).expanduser() if args.out else None)
    print(f"WROTE {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
