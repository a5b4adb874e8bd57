"""
memopad CLI — command-line host for MemoService

Commands:
    memopad new    [CONTENT]                 — create a memo (stdin if omitted)
    memopad list   [-n N]                    — memos, most recently updated first
    memopad search "query"                   — substring search → stdout
    memopad show   <id>                      — display a single memo
    memopad edit   <id> [CONTENT]            — replace content (stdin if omitted)
    memopad rm     <id>                      — delete a memo
    memopad export [--format F] [-o FILE]    — JSON or Markdown dump
    memopad stats                            — collection size and quota usage

Ids may be abbreviated to any unique prefix of at least 4 characters.

Environment variables:
    MEMOPAD_STORE    Store location (directory for file, .db for sqlite)
    MEMOPAD_BACKEND  Backend: file|sqlite (default: file)
    MEMOPAD_CONFIG   Path to a JSON config file

Precedence:
    CLI --flag  >  MEMOPAD_* env var  >  config file  >  compiled default

Exit codes:
    0  Success
    1  Operational error (memo not found, quota exceeded, unreadable store)
    2  Internal failure (unexpected exception)

Author: memopad contributors
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from memopad.config import MemopadConfig, ValidationError, load_config
from memopad.errors import StorageError
from memopad.service import MemoService
from memopad.text import count_words, extract_title, format_datetime, format_relative_time
from memopad.types import Memo, shorten_id

logger = logging.getLogger(__name__)

MIN_ID_PREFIX = 4
SQLITE_FILENAME = "memopad.db"


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    """Parse string env var with fallback."""
    return os.environ.get(name, default)


def _resolve_config(args: argparse.Namespace) -> MemopadConfig:
    """Config file, then MEMOPAD_* env vars, then CLI flags on top."""
    path = getattr(args, "config", None) or _env_str("MEMOPAD_CONFIG", "") or None
    cfg = load_config(path, strict=True)

    backend = getattr(args, "backend", None) or _env_str("MEMOPAD_BACKEND", "")
    if backend:
        cfg.storage.backend = backend
    store = getattr(args, "store", None) or _env_str("MEMOPAD_STORE", "")
    if store:
        cfg.storage.path = store

    if cfg.storage.backend == "sqlite" and not cfg.storage.path.endswith(".db"):
        cfg.storage.path = str(Path(cfg.storage.path) / SQLITE_FILENAME)
    return cfg


def _open_service(args: argparse.Namespace) -> MemoService:
    """Open the configured store and load it. Exits 1 if it cannot be read."""
    service = MemoService.from_config(_resolve_config(args))
    if service.error is not None:
        _warn(f"Cannot read memo store: {service.error}")
        service.close()
        sys.exit(1)
    return service


def _resolve_memo(service: MemoService, ref: str) -> Memo:
    """Find a memo by full id or unique prefix. Exits 1 when none or many."""
    memo = service.get_by_id(ref)
    if memo is not None:
        return memo
    if len(ref) >= MIN_ID_PREFIX:
        hits = [m for m in service.memos if m.id.startswith(ref)]
        if len(hits) == 1:
            return hits[0]
        if len(hits) > 1:
            _warn(f"Ambiguous id prefix: {ref} ({len(hits)} memos)")
            service.close()
            sys.exit(1)
    _warn(f"Memo not found: {ref}")
    service.close()
    sys.exit(1)


def _read_content(value: Optional[str]) -> str:
    """Content from the argument, or stdin when omitted or '-'."""
    if value is not None and value != "-":
        return value
    if value is None and sys.stdin.isatty():
        return ""
    return sys.stdin.read()


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _print_summary(memo: Memo) -> None:
    title = extract_title(memo.content)
    when = format_relative_time(memo.updated_at)
    print(f"  {shorten_id(memo.id)}  {when:16s}  {title}")


# ===========================================================================
# Command: new
# ===========================================================================


def cmd_new(args: argparse.Namespace) -> None:
    """Create a memo and print its id."""
    service = _open_service(args)
    content = _read_content(args.content)
    try:
        memo = service.create_and_select(content)
    except StorageError as e:
        _warn(f"Cannot create memo: {e}")
        service.close()
        sys.exit(1)

    if getattr(args, "json", False):
        print(json.dumps(memo.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(memo.id)
    _info(f"[new] Created memo {shorten_id(memo.id)}")
    service.close()


# ===========================================================================
# Command: list
# ===========================================================================


def cmd_list(args: argparse.Namespace) -> None:
    """List memos, most recently updated first."""
    service = _open_service(args)
    memos = service.memos
    if args.n is not None:
        memos = memos[: args.n]

    if getattr(args, "json", False):
        print(json.dumps([m.to_dict() for m in memos], indent=2, ensure_ascii=False))
    elif not memos:
        _info("No memos.")
    else:
        print(f"{len(memos)} memo(s):\n")
        for memo in memos:
            _print_summary(memo)

    service.close()


# ===========================================================================
# Command: search
# ===========================================================================


def cmd_search(args: argparse.Namespace) -> None:
    """Substring search over memo content."""
    service = _open_service(args)
    hits = service.filtered_view(args.query)

    if getattr(args, "json", False):
        print(json.dumps([m.to_dict() for m in hits], indent=2, ensure_ascii=False))
    elif not hits:
        _info("No results found.")
    else:
        print(f"Found {len(hits)} memo(s):\n")
        for memo in hits:
            _print_summary(memo)

    service.close()


# ===========================================================================
# Command: show
# ===========================================================================


def cmd_show(args: argparse.Namespace) -> None:
    """Show a memo by id."""
    service = _open_service(args)
    memo = _resolve_memo(service, args.id)

    if getattr(args, "json", False):
        print(json.dumps(memo.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(f"ID:       {memo.id}")
        print(f"Title:    {extract_title(memo.content)}")
        print(f"Created:  {format_datetime(memo.created_at)}")
        print(f"Updated:  {format_datetime(memo.updated_at)}")
        print(f"Words:    {count_words(memo.content)}")
        print(f"\n--- Content ---\n{memo.content}")

    service.close()


# ===========================================================================
# Command: edit
# ===========================================================================


def cmd_edit(args: argparse.Namespace) -> None:
    """Replace the content of a memo."""
    service = _open_service(args)
    memo = _resolve_memo(service, args.id)
    content = _read_content(args.content)
    try:
        updated = service.update_memo(memo.id, content)
    except StorageError as e:
        _warn(f"Cannot update memo: {e}")
        service.close()
        sys.exit(1)

    if getattr(args, "json", False):
        print(json.dumps(updated.to_dict(), indent=2, ensure_ascii=False))
    _info(f"[edit] Updated memo {shorten_id(updated.id)}")
    service.close()


# ===========================================================================
# Command: rm
# ===========================================================================


def cmd_rm(args: argparse.Namespace) -> None:
    """Delete a memo."""
    service = _open_service(args)
    memo = _resolve_memo(service, args.id)
    try:
        service.delete(memo.id)
    except StorageError as e:
        _warn(f"Cannot delete memo: {e}")
        service.close()
        sys.exit(1)

    if getattr(args, "json", False):
        print(json.dumps({"status": "ok", "deleted": memo.id}))
    _info(f"[rm] Deleted memo {shorten_id(memo.id)}")
    service.close()


# ===========================================================================
# Command: export
# ===========================================================================


def cmd_export(args: argparse.Namespace) -> None:
    """Export every memo as JSON or Markdown."""
    service = _open_service(args)
    text = service.export(args.format)

    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        _info(f"[export] Wrote {len(service.memos)} memo(s) to {args.output}")
    else:
        sys.stdout.write(text)
        if not text.endswith("\n"):
            sys.stdout.write("\n")

    service.close()


# ===========================================================================
# Command: stats
# ===========================================================================


def cmd_stats(args: argparse.Namespace) -> None:
    """Show collection statistics."""
    service = _open_service(args)
    memos = service.memos
    size = service.size_estimate()
    quota = service.store.quota_bytes
    stats = {
        "memos": len(memos),
        "words": sum(count_words(m.content) for m in memos),
        "size_bytes": size,
        "quota_bytes": quota,
        "quota_used": round(size / quota, 4),
    }

    if getattr(args, "json", False):
        stats["status"] = "ok"
        print(json.dumps(stats, indent=2, ensure_ascii=False))
    else:
        print("Memo Store Statistics")
        print("=" * 40)
        print(f"  Memos: {stats['memos']}")
        print(f"  Words: {stats['words']}")
        print(f"  Size:  {size} / {quota} bytes ({stats['quota_used']:.1%})")

    service.close()


# ===========================================================================
# Entry point
# ===========================================================================


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the memopad command."""
    # SUPPRESS defaults keep subparser defaults from overriding values
    # parsed at the main-parser level.
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--store", default=argparse.SUPPRESS,
        help="Store location (default: MEMOPAD_STORE or .memopad)",
    )
    _common.add_argument(
        "--backend", choices=["file", "sqlite"], default=argparse.SUPPRESS,
        help="Storage backend (default: MEMOPAD_BACKEND or file)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="JSON config file (default: MEMOPAD_CONFIG)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="memopad",
        description="memopad — short text notes with durable local storage",
        parents=[_common],
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    p_new = sub.add_parser("new", parents=[_common], help="Create a memo")
    p_new.add_argument("content", nargs="?", default=None, help="Memo content (stdin if omitted)")
    p_new.set_defaults(func=cmd_new)

    p_list = sub.add_parser("list", parents=[_common], help="List memos")
    p_list.add_argument("-n", type=int, default=None, help="Show at most N memos")
    p_list.set_defaults(func=cmd_list)

    p_search = sub.add_parser("search", parents=[_common], help="Search memo content")
    p_search.add_argument("query", help="Substring to look for (case-insensitive)")
    p_search.set_defaults(func=cmd_search)

    p_show = sub.add_parser("show", parents=[_common], help="Show a memo")
    p_show.add_argument("id", help="Memo id or unique prefix")
    p_show.set_defaults(func=cmd_show)

    p_edit = sub.add_parser("edit", parents=[_common], help="Replace a memo's content")
    p_edit.add_argument("id", help="Memo id or unique prefix")
    p_edit.add_argument("content", nargs="?", default=None, help="New content (stdin if omitted)")
    p_edit.set_defaults(func=cmd_edit)

    p_rm = sub.add_parser("rm", parents=[_common], help="Delete a memo")
    p_rm.add_argument("id", help="Memo id or unique prefix")
    p_rm.set_defaults(func=cmd_rm)

    p_export = sub.add_parser("export", parents=[_common], help="Export all memos")
    p_export.add_argument(
        "--format", "-f", choices=["json", "markdown"], default="json",
        help="Output format (default: json)",
    )
    p_export.add_argument("--output", "-o", default=None, help="Write to FILE instead of stdout")
    p_export.set_defaults(func=cmd_export)

    p_stats = sub.add_parser("stats", parents=[_common], help="Store statistics")
    p_stats.set_defaults(func=cmd_stats)

    return parser


def main() -> None:
    """CLI entry point: memopad <command> [args]."""
    global _quiet

    parser = build_parser()
    args = parser.parse_args()

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except ValidationError as e:
        _warn(str(e))
        sys.exit(1)
    except BrokenPipeError:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
