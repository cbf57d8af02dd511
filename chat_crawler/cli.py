# chat_crawler/cli.py
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import settings
from .errors import CrawlerError
from .services.keyed_store import KeyedStore, get_store
from .services.markdown_export import export_filename

log = logging.getLogger("chat_crawler")


async def run_crawl(store: KeyedStore) -> int:
    from .controllers.crawler_controller import CrawlCoordinator
    from .services.browser import attach_surface

    surface = attach_surface()
    coordinator = CrawlCoordinator(store)

    def report_progress(status):
        if status.is_crawling:
            log.info("%s messages crawled in #%s", status.message_count, status.current_channel_name)

    coordinator.broadcaster.subscribe(report_progress)

    report = await coordinator.start(surface)
    print(f"Crawling #{report.status.current_channel_name}: "
          f"{report.initial_messages} messages already on screen")
    try:
        await coordinator.wait()
    except (KeyboardInterrupt, asyncio.CancelledError):
        await coordinator.stop()

    status = coordinator.get_status()
    if status.last_error:
        print(f"Finished with errors: {status.last_error}", file=sys.stderr)
    print(f"Stored messages: {store.message_count()}")
    return 0


def cmd_stats(store: KeyedStore, channel_id: Optional[str]) -> int:
    if channel_id:
        stats = store.channel_stats(channel_id)
        print(f"Channel {channel_id}: {stats['message_count']} messages, "
              f"last crawled {stats['last_crawled'] or 'never'}")
    else:
        print(f"Messages: {store.message_count()}")
        print(f"Channels: {store.channel_count()}")
    return 0


def cmd_export(store: KeyedStore, out: str) -> int:
    from .services.exporter import export_database

    blob = export_database(store.dump())
    Path(out).write_bytes(blob)
    print(out)
    return 0


def cmd_markdown(input_db: str, output_file: str) -> int:
    from .services.markdown_export import write_markdown

    count = write_markdown(input_db, output_file)
    print(f"Successfully extracted {count} messages to {output_file}")
    return 0


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Crawl, inspect and export chat history")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL for this run")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("crawl", help=f"Crawl the channel open in the browser at {settings.debugger_address}")

    stats = sub.add_parser("stats", help="Show stored message and channel counts")
    stats.add_argument("--channel", help="Only this channel id")

    export = sub.add_parser("export", help="Export stored data to a normalized SQLite file")
    export.add_argument("-o", "--out", default=None, help="Output .sqlite path")

    markdown = sub.add_parser("markdown", help="Render an exported SQLite file as Markdown")
    markdown.add_argument("-i", "--input-db", required=True)
    markdown.add_argument("-o", "--output-file", required=True)

    sub.add_parser("clear", help="Delete all stored data")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        if args.cmd == "markdown":
            return cmd_markdown(args.input_db, args.output_file)

        store = KeyedStore.from_url(args.database_url) if args.database_url else get_store()
        if args.cmd == "crawl":
            return asyncio.run(run_crawl(store))
        if args.cmd == "stats":
            return cmd_stats(store, args.channel)
        if args.cmd == "export":
            return cmd_export(store, args.out or export_filename(".sqlite"))
        if args.cmd == "clear":
            store.clear_all()
            print("All data cleared")
            return 0
    except CrawlerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.error("unknown command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
