"""
Storyframe Main Entry Point

Generate images for every pending scene of a storyboard JSON file.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from storyframe.core.config import get_settings
from storyframe.core.logging_config import LogLevel, get_logger, setup_logging
from storyframe.core.models import Storyboard
from storyframe.factory import build_pipeline


def main(argv=None) -> int:
    """Main entry point for the storyframe CLI."""
    parser = argparse.ArgumentParser(
        description="Storyframe - continuity-preserving storyboard image generation"
    )

    parser.add_argument(
        "storyboard",
        type=str,
        help="Path to the storyboard JSON file"
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        help="Write the updated storyboard JSON to this path"
    )

    parser.add_argument(
        "--model", "-m",
        type=str,
        help="Image model id (overrides the storyboard and settings)"
    )

    parser.add_argument(
        "--scene",
        action="append",
        dest="scenes",
        help="Only generate these scene ids (repeatable)"
    )

    parser.add_argument(
        "--no-validation",
        action="store_true",
        help="Skip continuity validation"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )

    args = parser.parse_args(argv)

    if args.debug:
        log_level = LogLevel.DEBUG
    elif args.verbose:
        log_level = LogLevel.INFO
    else:
        log_level = LogLevel.WARNING
    setup_logging(level=log_level, verbose=args.verbose or args.debug)

    logger = get_logger("main")

    path = Path(args.storyboard)
    try:
        storyboard = Storyboard.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Could not load storyboard {path}: {e}")
        print(f"Could not load storyboard {path}: {e}", file=sys.stderr)
        return 1

    settings = get_settings()
    updates = {}
    if args.model:
        storyboard.style.image_model = args.model
    if args.no_validation:
        updates["validation_enabled"] = False
    if updates:
        settings = settings.model_copy(update=updates)

    report = asyncio.run(run(storyboard, settings, args.scenes))

    print(report.summary())
    for scene_id in report.failed:
        scene = storyboard.get_scene(scene_id)
        print(f"  ✗ {scene_id}: {scene.error if scene else 'unknown scene'}")
    for scene in storyboard.ordered_scenes():
        if scene.error and scene.id not in report.failed:
            print(f"  ⚠ {scene.id}: {scene.error}")

    if args.output:
        Path(args.output).write_text(json.dumps(storyboard.to_dict(), indent=2), encoding="utf-8")
        logger.info(f"Wrote storyboard to {args.output}")

    return 0 if not report.failed else 2


async def run(storyboard, settings, scene_ids=None):
    """Run one batch over the storyboard."""
    async with build_pipeline(storyboard, settings) as pipeline:
        scenes = None
        if scene_ids:
            scenes = [s for s in storyboard.scenes if s.id in scene_ids]
        return await pipeline.batch.run_all(scenes)


if __name__ == "__main__":
    sys.exit(main())
