"""
Encore Player - Main Entry Point

Headless runner for the playback queue and recommendation engine: restores the
saved queue, optionally imports a library and starts playback, then logs the
queue as it evolves.
"""

import argparse
import json
import logging
import os
import sys
import time

# Add src to path
src_path = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, src_path)

logger = logging.getLogger("encore")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Encore Player (headless)")
    parser.add_argument("--config", help="Path to the YAML configuration file")
    parser.add_argument("--db", help="Path to the SQLite database")
    parser.add_argument("--log-level", help="Logging level (overrides logging.level)")
    parser.add_argument("--import", dest="import_path",
                        help="JSON file with a list of tracks to add to the local library")
    parser.add_argument("--play", metavar="TRACK_ID",
                        help="Play this track with the whole library as context")
    parser.add_argument("--run-seconds", type=float, default=0.0,
                        help="Keep playing for this many seconds before exiting")
    return parser.parse_args(argv)


def log_queue(container) -> None:
    snapshot = container.queue.snapshot()
    logger.info(
        "Queue: %d entries, current %d, shuffle=%s, repeat=%s",
        len(snapshot.entries), snapshot.current_index,
        snapshot.mode.shuffle, snapshot.mode.repeat.value,
    )
    for i, entry in enumerate(snapshot.entries):
        marker = ">" if i == snapshot.current_index else " "
        logger.info("%s %3d [%s] %s", marker, i, entry.origin.value, entry.track.display_name)


def main(argv=None) -> int:
    """Application entry point"""
    args = parse_args(argv)

    from app.container_factory import AppContainerFactory
    from core.ports.catalog import SortOrder, TrackQuery

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Create dependency container (composition root)
    container = AppContainerFactory.create(config_path=args.config, db_path=args.db)
    level = (args.log_level or container.config.get("logging.level", "INFO")).upper()
    logging.getLogger().setLevel(getattr(logging, level, logging.INFO))

    try:
        if args.import_path:
            with open(args.import_path, "r", encoding="utf-8") as f:
                items = json.load(f)
            container.catalog.import_tracks(items if isinstance(items, list) else [])

        restored = AppContainerFactory.start(container)
        if restored:
            logger.info("Restored previous session")

        if args.play:
            track = container.catalog.get_track(args.play)
            if track is None:
                logger.error("Unknown track: %s", args.play)
                return 1
            context = container.catalog.search_tracks(
                TrackQuery(sort=SortOrder.NAME, limit=container.queue.capacity)
            )
            container.queue.play_track(track, context)

        if args.run_seconds > 0:
            time.sleep(args.run_seconds)

        log_queue(container)
        return 0
    finally:
        container.cleanup()


if __name__ == "__main__":
    sys.exit(main())
