"""
Song Recommendation - Data Completion CLI
==========================================

    songrec complete [--song-id ID] [--dry-run] [--batch-size N] [--max-songs N]
    songrec validate [--dry-run]
    songrec stats

Runs against the SQLite database from SONGREC_DB_PATH (or --db).
"""

import argparse
import asyncio
import json
import sys
import time
from typing import List, Optional

from loguru import logger

from songrec import settings
from songrec.errors import SongRecError
from songrec.infra.database import SqlEventRepository, SqlSongRepository, get_db_manager
from songrec.logs import configure_logging
from songrec.services import build_services


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="songrec", description="Catalogue data completion jobs")
    parser.add_argument("--db", default=settings.DB_PATH, help="SQLite database path")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Log level")

    commands = parser.add_subparsers(dest="command", required=True)

    complete = commands.add_parser("complete", help="Predict and store missing features, genres and moods")
    complete.add_argument("--song-id", default=None, help="Complete a single song")
    complete.add_argument("--dry-run", action="store_true", help="Compute predictions without writing")
    complete.add_argument("--batch-size", type=int, default=settings.COMPLETION_BATCH_SIZE, help="Songs per batch")
    complete.add_argument("--max-songs", type=int, default=None, help="Stop after this many songs")

    validate = commands.add_parser("validate", help="Clamp out-of-range feature values")
    validate.add_argument("--dry-run", action="store_true", help="Report without writing")

    commands.add_parser("stats", help="Completion statistics")

    return parser


async def run(args: argparse.Namespace) -> dict:
    db_manager = await get_db_manager(args.db)
    try:
        services = build_services(SqlSongRepository(db_manager), SqlEventRepository(db_manager))
        completion = services.completion

        if args.command == "complete":
            report = await completion.complete_song_data(
                song_id=args.song_id,
                dry_run=args.dry_run,
                batch_size=args.batch_size,
                max_songs=args.max_songs,
            )
            return report.to_dict()
        if args.command == "validate":
            return await completion.validate_and_clean(dry_run=args.dry_run)
        return await completion.completion_stats()
    finally:
        await db_manager.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, sink=sys.stderr)

    logger.info("=" * 60)
    logger.info(f"DATA COMPLETION: {args.command.upper()}")
    logger.info("=" * 60)

    start_time = time.time()
    try:
        result = asyncio.run(run(args))
    except SongRecError as e:
        logger.error(f"❌ {args.command} failed: {e}")
        return 1

    print(json.dumps(result, indent=2, default=str))
    logger.info(f"Total time: {time.time() - start_time:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
