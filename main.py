"""CLI entrypoint for the product seed pipeline: crawl -> enrich -> seed."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from config import Settings, load_settings
from crawl_stage import crawl_and_save
from enrich_stage import enrich_latest_snapshot
from seed_stage import seed_latest_snapshot
from seed_urls import SEED_URLS

STAGES = ("crawl", "enrich", "seed")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Crawl, enrich and seed the product directory")
    parser.add_argument(
        "--stage",
        choices=[*STAGES, "all"],
        default="all",
        help="Run a single stage, or all three in order (default)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Enrich only the first N records of the latest raw snapshot",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only log what would be processed, without API calls or writes",
    )
    return parser.parse_args(argv)


def run_stage(stage: str, settings: Settings, limit: int | None, dry_run: bool) -> None:
    """Run one stage; stage-level errors propagate to the caller."""
    if stage == "crawl":
        if dry_run:
            logging.info("[dry-run] Would crawl %s seed URLs", len(SEED_URLS))
            return
        asyncio.run(crawl_and_save(SEED_URLS, settings))
    elif stage == "enrich":
        asyncio.run(enrich_latest_snapshot(settings, limit=limit, dry_run=dry_run))
    elif stage == "seed":
        seed_latest_snapshot(settings, dry_run=dry_run)
    else:
        raise ValueError(f"Unknown stage: {stage}")


def run(stages: tuple[str, ...], settings: Settings, limit: int | None, dry_run: bool) -> bool:
    """Run ``stages`` in order, stopping at the first one that fails."""
    for number, stage in enumerate(stages, start=1):
        logging.info("Step %s: %s", number, stage)
        try:
            run_stage(stage, settings, limit=limit, dry_run=dry_run)
        except Exception as exc:  # surface stage failures to the operator, then stop
            logging.exception("Stage %s failed: %s", stage, exc)
            return False
        logging.info("Step %s (%s) completed successfully", number, stage)

    logging.info("Pipeline completed successfully")
    return True


def main(argv: list[str] | None = None) -> None:
    """Initialize config and execute the requested stages."""
    # .env.local wins: load_dotenv never overrides variables already set
    load_dotenv(".env.local")
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    args = parse_args(argv)
    settings = load_settings()

    stages = STAGES if args.stage == "all" else (args.stage,)
    if not run(stages, settings, limit=args.limit, dry_run=args.dry_run):
        sys.exit(1)


if __name__ == "__main__":
    main()
