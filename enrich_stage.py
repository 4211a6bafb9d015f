"""Stage 2 batch driver: enrich the latest raw snapshot with bounded concurrency."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from config import Settings
from enrichment import CallCounter, Enricher, EnrichmentFailed
from llm_client import Tier, build_model_clients
from models import EnrichedRecord, FailureRecord, RawRecord
from rate_limiter import RateLimiter
from snapshots import ENRICHED, FAILED_ENRICHED, RAW, load_latest_snapshot, run_version, save_snapshot

DEFAULT_CONCURRENCY = 2

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EnrichmentResult:
    enriched: list[EnrichedRecord]
    failed: list[FailureRecord]


@dataclass(frozen=True, slots=True)
class EnrichmentSummary:
    """Counts reported at the end of an enrichment run."""

    raw_count: int
    enriched_count: int
    failed_count: int
    fast_calls: int
    smart_calls: int
    enriched_path: Path | None = None
    failed_path: Path | None = None

    @property
    def total_calls(self) -> int:
        return self.fast_calls + self.smart_calls


async def enrich_records(
    records: list[RawRecord],
    enricher: Enricher,
    limiter: RateLimiter,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> EnrichmentResult:
    """Enrich every record, isolating failures per record.

    At most ``concurrency`` records are in flight at once, and each record's
    whole attempt chain is additionally throttled by ``limiter``.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    semaphore = asyncio.Semaphore(concurrency)
    throttled_enrich = limiter.wrap(enricher.enrich)
    enriched: list[EnrichedRecord] = []
    failed: list[FailureRecord] = []
    total = len(records)

    async def _process(record: RawRecord) -> None:
        async with semaphore:
            try:
                enriched.append(await throttled_enrich(record))
            except EnrichmentFailed as exc:
                failed.append(FailureRecord(record=record, error=str(exc.last_error)))
            except Exception as exc:  # broad by design: one record must not sink the batch
                LOGGER.exception("Unexpected error enriching codename=%s", record.codename)
                failed.append(FailureRecord(record=record, error=str(exc)))

            LOGGER.info(
                "Progress: %s/%s done (enriched=%s failed=%s)",
                len(enriched) + len(failed),
                total,
                len(enriched),
                len(failed),
            )

    await asyncio.gather(*(_process(record) for record in records))
    return EnrichmentResult(enriched=enriched, failed=failed)


def build_enricher(settings: Settings, counter: CallCounter) -> Enricher:
    return Enricher(
        clients=build_model_clients(settings),
        counter=counter,
        max_attempts=settings.max_attempts,
        fix_prompt_with_candidate=settings.fix_prompt_with_candidate,
    )


async def run_enrichment(
    records: list[RawRecord],
    settings: Settings,
    enricher: Enricher | None = None,
    version: str | None = None,
) -> EnrichmentSummary:
    """Enrich ``records``, persist both output sets and return the summary."""
    counter = enricher.counter if enricher is not None else CallCounter()
    enricher = enricher or build_enricher(settings, counter)
    limiter = RateLimiter(settings.rate_limit, settings.rate_interval_seconds)
    version = version or run_version()

    LOGGER.info(
        "Starting enrichment of %s records (concurrency=%s rate=%s/%ss max_attempts=%s)",
        len(records),
        settings.concurrency,
        settings.rate_limit,
        settings.rate_interval_seconds,
        enricher.max_attempts,
    )
    result = await enrich_records(records, enricher, limiter, concurrency=settings.concurrency)

    enriched_path = save_snapshot(
        settings.data_dir, ENRICHED, version, [item.to_dict() for item in result.enriched]
    )
    failed_path = None
    if result.failed:
        failed_path = save_snapshot(
            settings.data_dir, FAILED_ENRICHED, version, [item.to_dict() for item in result.failed]
        )

    summary = EnrichmentSummary(
        raw_count=len(records),
        enriched_count=len(result.enriched),
        failed_count=len(result.failed),
        fast_calls=counter.get(Tier.FAST),
        smart_calls=counter.get(Tier.SMART),
        enriched_path=enriched_path,
        failed_path=failed_path,
    )
    log_summary(summary)
    return summary


def log_summary(summary: EnrichmentSummary) -> None:
    LOGGER.info(
        "Enrichment complete. raw=%s enriched=%s failed=%s",
        summary.raw_count,
        summary.enriched_count,
        summary.failed_count,
    )
    LOGGER.info(
        "Model calls: fast=%s smart=%s total=%s",
        summary.fast_calls,
        summary.smart_calls,
        summary.total_calls,
    )


async def enrich_latest_snapshot(
    settings: Settings,
    limit: int | None = None,
    dry_run: bool = False,
    enricher: Enricher | None = None,
) -> EnrichmentSummary | None:
    """Load the newest raw snapshot and enrich it.

    Raises PersistenceError when no raw snapshot exists or output cannot be
    written. Returns None for a dry run.
    """
    _, items = load_latest_snapshot(settings.data_dir, RAW)
    records = [RawRecord.from_dict(item) for item in items]
    if limit is not None:
        records = records[:limit]

    if dry_run:
        for record in records:
            LOGGER.info("[dry-run] Would enrich: %s (%s)", record.codename, record.product_website)
        LOGGER.info("[dry-run] Enrichment would process %s records", len(records))
        return None

    return await run_enrichment(records, settings, enricher=enricher)
