#!/usr/bin/env python3
"""
Weather Broadcast Generator
Main entry point
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime

from weather_broadcast.config import BROADCAST_TIME, DEBUG, LOG_FILE, LOCATIONS, validate_broadcast_time
from weather_broadcast.utils.logging import setup_logging

# Set up logging first
logger = setup_logging(LOG_FILE, logging.DEBUG if DEBUG else logging.INFO)


def show_episodes(limit: int):
    """List recent broadcasts"""
    from weather_broadcast.database import BroadcastDatabase

    episodes = BroadcastDatabase().list_episodes(limit)
    if not episodes:
        logger.info("No broadcasts yet. Run 'python main.py generate' to create one.")
        return

    logger.info(f"\n📺 Recent broadcasts ({len(episodes)})")
    logger.info("=" * 60)
    for episode in episodes:
        stale = f" (stale {episode.stale_age_hours}h)" if episode.weather_is_stale else ""
        logger.info(f"  #{episode.episode_number:<4} {episode.broadcast_date} {episode.broadcast_time}  "
                    f"{episode.stage.value:<12}{stale}")
        if episode.video_path:
            logger.info(f"        {episode.video_path}")
        if episode.error:
            logger.error(f"        {episode.error}")


def show_health_report():
    """Display pipeline health monitoring report"""
    from weather_broadcast.monitoring import StageMonitor

    summary = StageMonitor().get_health_summary()

    logger.info("\n🏥 PIPELINE HEALTH REPORT")
    logger.info("=" * 60)
    logger.info(f"\n📊 Overall Health: {summary['overall_health']}")
    logger.info(f"⚠️  Total failures (24h): {summary['total_failures_24h']}")

    if summary['stage_stats']:
        logger.info("\n📈 Stage Statistics:")
        for stage, stats in summary['stage_stats'].items():
            logger.info(f"\n  {stage}:")
            logger.info(f"    Success rate: {stats['success_rate']}")
            logger.info(f"    Total attempts: {stats['total_attempts']}")
            if stats['consecutive_failures'] > 0:
                logger.warning(f"    ⚠️  Consecutive failures: {stats['consecutive_failures']}")

    if summary['recent_errors']:
        logger.info("\n🚨 Recent Errors (last 5):")
        for error in summary['recent_errors']:
            logger.error(f"  [{error['timestamp']}] {error['stage']} - {error['broadcast_date']}")
            logger.error(f"    {error['error']}")


async def generate(target: str, location: str, preview: bool = False,
                   images: bool = True, video: bool = True) -> int:
    from weather_broadcast.app import BroadcastPipeline
    from weather_broadcast.models import EpisodeStage

    logger.info("🌙 Weather Broadcast Generator")
    logger.info(f"🕐 Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    stop_after = None
    if preview:
        stop_after = EpisodeStage.GENERATING
    elif not video:
        stop_after = EpisodeStage.SYNTHESIZING

    pipeline = BroadcastPipeline()
    result = await pipeline.run(target, location, stop_after=stop_after, images=images)

    if result.skipped:
        logger.info(f"Broadcast already complete: {result.video_path}")
    elif result.stopped_after is EpisodeStage.GENERATING:
        logger.info("📝 Script preview:\n")
        logger.info(result.episode.script)
        logger.info("\nRun without --preview to produce audio and video")
    elif result.stopped_after is EpisodeStage.SYNTHESIZING:
        logger.info(f"🎙️  Audio ready: {result.audio_path}")
    elif result.success:
        logger.info(f"🎉 Broadcast ready: {result.video_path}")
    else:
        logger.error(f"❌ Broadcast failed: {result.error}")
        logger.error("Run the same command again to resume from the failed stage")
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Generate narrated weather broadcast videos')
    subparsers = parser.add_subparsers(dest='command')

    gen = subparsers.add_parser('generate', help='Generate (or resume) a broadcast')
    gen.add_argument('--date', '-d', dest='target', default=None,
                     help='Broadcast time, e.g. "2025-01-15 21:00", "tonight", "tomorrow 6am" '
                          '(default: today at BROADCAST_TIME)')
    gen.add_argument('--location', '-l', default=None, choices=sorted(LOCATIONS),
                     help='Broadcast location')
    gen.add_argument('--dry-run', action='store_true', help='Run without paid API calls')
    gen.add_argument('--preview', '-p', action='store_true',
                     help='Stop after writing the script; a later run continues from it')
    gen.add_argument('--no-images', dest='images', action='store_false',
                     help='Render over blank frames instead of generating images')
    gen.add_argument('--no-video', dest='video', action='store_false',
                     help='Stop once the audio is ready')

    lst = subparsers.add_parser('list', help='List recent broadcasts')
    lst.add_argument('--limit', '-n', type=int, default=10)

    subparsers.add_parser('health', help='Show pipeline health report')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or 'generate'

    if command == 'list':
        show_episodes(args.limit)
        return 0
    if command == 'health':
        show_health_report()
        return 0

    if getattr(args, 'dry_run', False):
        os.environ['DRY_RUN'] = 'true'
    try:
        target = getattr(args, 'target', None) or f"today {validate_broadcast_time(BROADCAST_TIME)}"
        return asyncio.run(generate(
            target,
            getattr(args, 'location', None),
            preview=getattr(args, 'preview', False),
            images=getattr(args, 'images', True),
            video=getattr(args, 'video', True),
        ))
    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted; the broadcast will resume from its last completed stage")
        return 130


if __name__ == "__main__":
    sys.exit(main())
