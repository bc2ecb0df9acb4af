"""CLI entrypoints for apiscan commands."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .config import ConfigError, load_config
from .engine import ExtractionEngine
from .logging import configure_logging
from .parsers import TREE_SITTER_AVAILABLE, available_languages, canonical_language
from .repo_scanner import RepoScanner

_TREE_SITTER_LANGUAGES = {"typescript", "rust", "go"}


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    kwargs["default"] = argparse.SUPPRESS if suppress_default else False
    parser.add_argument("-v", "--verbose", **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apiscan",
        description="Extract API routes and schemas from source code.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser(
        "scan",
        help="Extract routes and schemas from a repository or a single file.",
    )
    _add_verbose_option(scan_parser, suppress_default=True)
    scan_parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the repository root or a source file (defaults to current directory).",
    )
    scan_parser.add_argument(
        "--language",
        action="append",
        default=[],
        metavar="LANG",
        help="Only scan files of this language tag (repeatable).",
    )
    scan_parser.add_argument("--workers", type=int, help="Worker-pool size (overrides .apiscan.yml).")
    scan_parser.add_argument("--output", "-o", help="Write the JSON document to this file.")
    scan_parser.add_argument("--log-file", help="Also write debug logs to this file.")
    only = scan_parser.add_mutually_exclusive_group()
    only.add_argument("--routes-only", action="store_true", help="Emit routes without schemas.")
    only.add_argument("--schemas-only", action="store_true", help="Emit schemas without routes.")
    scan_parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only log warnings and errors."
    )

    languages_parser = subparsers.add_parser("languages", help="List the registered language tags.")
    _add_verbose_option(languages_parser, suppress_default=True)
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for apiscan commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_file = getattr(args, "log_file", None)
    configure_logging(
        verbose=bool(args.verbose),
        quiet=bool(getattr(args, "quiet", False)),
        log_file=Path(log_file) if log_file else None,
    )

    if args.command == "languages":
        for language in available_languages():
            note = ""
            if language in _TREE_SITTER_LANGUAGES and not TREE_SITTER_AVAILABLE:
                note = " (tree-sitter grammars not installed)"
            print(f"{language}{note}")
        return
    if args.command != "scan":  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")

    target = Path(args.path).expanduser()
    if not target.exists():
        parser.exit(1, f"Path not found: {args.path}\n")
    try:
        config = load_config(target if target.is_dir() else target.parent)
    except ConfigError as exc:
        parser.exit(1, f"Invalid configuration: {exc}\n")

    if args.language:
        config.languages = [canonical_language(name) for name in args.language]
        unknown = sorted(set(config.languages) - set(available_languages()))
        if unknown:
            parser.exit(1, f"Unsupported language: {', '.join(unknown)}\n")
    if args.workers is not None:
        if args.workers < 1:
            parser.exit(1, "--workers must be a positive integer\n")
        config.workers = args.workers

    files = RepoScanner(config).scan(str(target))
    if target.is_file() and files and not config.allows(files[0].language):
        files = []
    result = ExtractionEngine(config).run(files)
    payload = result.to_dict(routes=not args.schemas_only, schemas=not args.routes_only)
    document = json.dumps(payload, indent=2)

    if args.output:
        Path(args.output).write_text(document + "\n", encoding="utf-8")
    else:
        print(document)


if __name__ == "__main__":
    main(sys.argv[1:])
