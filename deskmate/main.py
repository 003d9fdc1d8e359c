"""Deskmate command-line entry point.

Inspect and maintain the local chat history without opening the window.

Usage examples:
    # Storage summary
    deskmate stats

    # Conversations mentioning "invoice"
    deskmate list --search invoice

    # Markdown transcript of one conversation
    deskmate export 3f2a... --format md

    # Drop everything not touched in 30 days
    deskmate cleanup --days 30
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from deskmate.bridge import ChatBridge
from deskmate.config import settings
from deskmate.context import AppContext
from deskmate.store.registry import StoreRegistry

logger = logging.getLogger(__name__)


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def run(args: argparse.Namespace) -> int:
    """Execute one CLI command against a freshly loaded context."""
    ctx = AppContext.create(data_dir=args.data_dir, registry=StoreRegistry())
    try:
        await ctx.start()
        bridge = ChatBridge(ctx)
        if args.command == "stats":
            _print_json(bridge.get_storage_info())
        elif args.command == "privacy":
            _print_json(bridge.get_privacy_settings())
        elif args.command == "list":
            views = bridge.search_conversations(args.search or "")
            for view in views:
                print(f"{view['id']}  {view['updated_at'][:19]}  {view['message_count']:4d}  {view['title']}")
            if not views:
                print("No conversations found.")
        elif args.command == "export":
            text = bridge.export_conversation(args.conversation_id, args.format)
            if text is None:
                print(f"Conversation not found: {args.conversation_id}", file=sys.stderr)
                return 1
            print(text)
        elif args.command == "export-all":
            print(bridge.export_all_data())
        elif args.command == "import":
            try:
                added = await ctx.chat.import_data(Path(args.file).read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                print(f"Could not import {args.file}: {exc}", file=sys.stderr)
                return 1
            print(f"Imported {added} conversations.")
        elif args.command == "cleanup":
            if args.days is not None:
                deleted = await ctx.chat.cleanup_old_conversations(args.days)
                print(f"Deleted {deleted} conversations.")
            else:
                result = await bridge.run_cleanup()
                if not result.success:
                    print(result.error, file=sys.stderr)
                    return 1
                _print_json(result.data)
        elif args.command == "clear":
            if not args.yes:
                print("Refusing to delete all conversations without --yes.", file=sys.stderr)
                return 1
            result = await bridge.clear_all_data()
            if not result.success:
                print(result.error, file=sys.stderr)
                return 1
            print("All chat data deleted.")
        return 0
    finally:
        await ctx.shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deskmate", description="Manage Deskmate chat history")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help=f"Data directory (default: {settings.data_dir})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Show storage statistics")
    sub.add_parser("privacy", help="Show the retention policy")

    list_cmd = sub.add_parser("list", help="List conversations, newest first")
    list_cmd.add_argument("--search", "-s", help="Only conversations matching this text")

    export_cmd = sub.add_parser("export", help="Print one conversation")
    export_cmd.add_argument("conversation_id")
    export_cmd.add_argument("--format", "-f", choices=["json", "txt", "md"], default="json")

    sub.add_parser("export-all", help="Print every conversation as one JSON bundle")

    import_cmd = sub.add_parser("import", help="Merge conversations from an export bundle")
    import_cmd.add_argument("file")

    cleanup_cmd = sub.add_parser("cleanup", help="Run the retention cleanup")
    cleanup_cmd.add_argument("--days", type=int, help="Keep only conversations updated in the last N days")

    clear_cmd = sub.add_parser("clear", help="Delete every conversation")
    clear_cmd.add_argument("--yes", action="store_true", help="Confirm deletion")
    return parser


def main() -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level),
    )
    args = build_parser().parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
