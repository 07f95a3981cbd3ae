"""Keep every registered chat's timetable messages up to date.

Reads the conversation state files from data/ (one <chat_id>.json each),
then either runs one refresh per chat and exits, or keeps refreshing each
chat on its own interval until interrupted.

Run with:   python scripts/run_sync.py
One pass:   python scripts/run_sync.py --once
No writes:  python scripts/run_sync.py --once --dry-run
Repost all: python scripts/run_sync.py --once --force-send
Single chat: python scripts/run_sync.py --once --chat -1001234567890

Exit codes:
  0 = success
  1 = error (message on stderr)
"""

import argparse
import asyncio
import os
import sys

from telegram import Bot

# Add project root to path for src imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.timetable_sync.config import get_config  # noqa: E402
from src.timetable_sync.errors import StoreError  # noqa: E402
from src.timetable_sync.logging import get_logger, setup_logging  # noqa: E402
from src.timetable_sync.messaging import (  # noqa: E402
    DryRunMessagePort,
    TelegramMessagePort,
)
from src.timetable_sync.scheduler import ConversationScheduler  # noqa: E402
from src.timetable_sync.source import GoogleSheetSource  # noqa: E402
from src.timetable_sync.store import JsonStateStore  # noqa: E402

log = get_logger("run_sync")


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments using argparse."""
    parser = argparse.ArgumentParser(
        description="Sync Google Sheets timetables into Telegram chats.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one refresh cycle per chat and exit.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log messages instead of sending them; state files are not written.",
    )
    parser.add_argument(
        "--force-send",
        action="store_true",
        help="With --once: post every day as a new message.",
    )
    parser.add_argument(
        "--chat",
        type=int,
        action="append",
        default=None,
        help="Only process this chat id (repeatable). Default: all stored chats.",
    )
    return parser.parse_args()


async def main(args: argparse.Namespace) -> int:
    config = get_config()
    setup_logging(json_output=config.log_json, log_level=config.log_level)

    store = JsonStateStore(config.data_dir, read_only=args.dry_run)
    source = GoogleSheetSource(timeout_seconds=config.fetch_timeout_seconds)

    bot = None
    if args.dry_run:
        port = DryRunMessagePort()
    else:
        if not config.telegram_bot_token:
            print("ERROR: TELEGRAM_BOT_TOKEN is not set", file=sys.stderr)
            return 1
        bot = Bot(config.telegram_bot_token)
        port = TelegramMessagePort(bot)

    chat_ids = args.chat or [state.conversation_id for state in store.load_all()]
    if not chat_ids:
        log.warning("no_conversations", data_dir=config.data_dir)
        return 0

    scheduler = ConversationScheduler(
        store=store, source=source, port=port, config=config
    )

    if bot is not None:
        await bot.initialize()
    try:
        if args.once:
            failures = 0
            for chat_id in chat_ids:
                try:
                    report = await scheduler.run_once(chat_id, force_send=args.force_send)
                except StoreError as e:
                    log.error("cycle_not_persisted", conversation_id=chat_id, error=str(e))
                    failures += 1
                    continue
                log.info("cycle_report", **report.model_dump(mode="json"))
            return 1 if failures else 0

        for chat_id in chat_ids:
            scheduler.start(chat_id)
        log.info("scheduler_running", conversations=len(chat_ids))
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.stop_all()
    finally:
        if bot is not None:
            await bot.shutdown()
    return 0


if __name__ == "__main__":
    args = _parse_args()
    try:
        sys.exit(asyncio.run(main(args)))
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
