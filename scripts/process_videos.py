"""Run the caption pipeline from the command line.

Examples:
    python scripts/process_videos.py process 42 dQw4w9WgXcQ
    python scripts/process_videos.py continue 42
    python scripts/process_videos.py drain --max-videos 5
    python scripts/process_videos.py purge
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import settings
from src.ingestion.models import PipelineResult
from src.ingestion.pipeline import build_scheduler, continue_processing, drain_pending, process_video
from src.ingestion.storage import get_supabase_client
from src.pipeline_config import PipelineConfig, ProcessingStatus

SUCCESS_STATUSES = (ProcessingStatus.COMPLETED, ProcessingStatus.PARTIAL)


def print_result(result: PipelineResult) -> None:
    line = f"  video {result.video_id} ({result.youtube_video_id}): {result.status.value}"
    line += f" -- {result.phrases_indexed} phrases indexed"
    if result.message:
        line += f" -- {result.message}"
    print(line)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Caption phrase indexing pipeline")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    process = commands.add_parser("process", help="Fetch, clean and index one video's captions")
    process.add_argument("video_id", type=int)
    process.add_argument("youtube_video_id")

    cont = commands.add_parser("continue", help="Drain pending chunks of a partially processed video")
    cont.add_argument("video_id", type=int)

    drain = commands.add_parser("drain", help="Continue every video with pending chunks")
    drain.add_argument("--max-videos", type=int, default=None)

    commands.add_parser("purge", help="Delete finished queue chunks past the retention window")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "process":
        result = process_video(args.video_id, args.youtube_video_id)
        print_result(result)
        return 0 if result.status in SUCCESS_STATUSES else 1

    if args.command == "continue":
        result = continue_processing(args.video_id)
        print_result(result)
        return 0 if result.status in SUCCESS_STATUSES else 1

    if args.command == "drain":
        results = drain_pending(max_videos=args.max_videos)
        print(f"Continued {len(results)} videos")
        for result in results:
            print_result(result)
        return 0

    scheduler = build_scheduler(get_supabase_client(), PipelineConfig.from_settings(settings))
    purged = scheduler.purge_expired()
    print(f"Purged {purged} queue chunks")
    return 0


if __name__ == "__main__":
    sys.exit(main())
