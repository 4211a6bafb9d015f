import asyncio
import json
from pathlib import Path

import pytest

from config import Settings
from enrich_stage import enrich_latest_snapshot, enrich_records, run_enrichment
from enrichment import CallCounter, EnrichmentFailed
from llm_client import GenerationError, Tier
from models import EnrichedRecord, EnrichmentCandidate, RawRecord
from rate_limiter import RateLimiter
from snapshots import PersistenceError, save_snapshot


def _raw(codename: str) -> RawRecord:
    return RawRecord(
        codename=codename,
        product_website=f"https://{codename}.example.com",
        punchline=codename.title(),
        description=f"{codename} description",
        site_content=f"{codename} content",
        logo_src=f"https://{codename}.example.com/logo.png",
    )


class StubEnricher:
    """Enricher double: codenames listed in ``failing`` raise, others succeed."""

    def __init__(self, failing: set[str] | None = None, crashing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.crashing = crashing or set()
        self.counter = CallCounter()
        self.max_attempts = 3
        self.in_flight = 0
        self.max_in_flight = 0

    async def enrich(self, record: RawRecord) -> EnrichedRecord:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            self.counter.increment(Tier.FAST, 2)
            if record.codename in self.crashing:
                raise KeyError("codename")
            if record.codename in self.failing:
                self.counter.increment(Tier.SMART, 2)
                raise EnrichmentFailed(record, GenerationError("model kept failing"))
            candidate = EnrichmentCandidate(
                codename=record.codename,
                punchline="Ship faster",
                description="Enriched.",
                tags=["tools"],
                labels=["tools"],
                category="design",
            )
            return EnrichedRecord.from_candidate(record, candidate)
        finally:
            self.in_flight -= 1


def _settings(data_dir: Path, **overrides) -> Settings:
    values = {
        "provider": "openai",
        "api_key": "test-key",
        "fast_model": "fast",
        "smart_model": "smart",
        "rate_limit": 100,
        "rate_interval_seconds": 1.0,
        "data_dir": data_dir,
    }
    values.update(overrides)
    return Settings(**values)


def test_enrich_records_isolates_failures() -> None:
    records = [_raw(name) for name in ("alpha", "beta", "gamma", "delta", "omega")]
    enricher = StubEnricher(failing={"beta"}, crashing={"delta"})
    limiter = RateLimiter(limit=100, interval=1.0)

    result = asyncio.run(enrich_records(records, enricher, limiter, concurrency=2))

    enriched = {item.codename for item in result.enriched}
    failed = {item.record.codename for item in result.failed}
    assert enriched == {"alpha", "gamma", "omega"}
    assert failed == {"beta", "delta"}
    assert enriched.isdisjoint(failed)
    assert len(enriched) + len(failed) == len(records)
    assert enricher.max_in_flight <= 2
    errors = {item.record.codename: item.error for item in result.failed}
    assert errors["beta"] == "model kept failing"


def test_enrich_records_rejects_zero_concurrency() -> None:
    with pytest.raises(ValueError):
        asyncio.run(enrich_records([], StubEnricher(), RateLimiter(1, 1.0), concurrency=0))


def test_run_enrichment_writes_both_snapshots(tmp_path: Path) -> None:
    records = [_raw("alpha"), _raw("beta")]
    enricher = StubEnricher(failing={"beta"})

    summary = asyncio.run(
        run_enrichment(records, _settings(tmp_path), enricher=enricher, version="20240102T000000")
    )

    assert summary.raw_count == 2
    assert summary.enriched_count == 1
    assert summary.failed_count == 1
    assert summary.fast_calls == 4
    assert summary.smart_calls == 2
    assert summary.total_calls == 6
    assert summary.enriched_path == tmp_path / "enriched-20240102T000000.json"
    assert summary.failed_path == tmp_path / "failed-enriched-20240102T000000.json"

    enriched = json.loads(summary.enriched_path.read_text(encoding="utf-8"))
    assert enriched[0]["codename"] == "alpha"
    assert enriched[0]["tags"] == ["tools"]
    failed = json.loads(summary.failed_path.read_text(encoding="utf-8"))
    assert failed == [{**_raw("beta").to_dict(), "error": "model kept failing"}]


def test_run_enrichment_skips_empty_failure_snapshot(tmp_path: Path) -> None:
    summary = asyncio.run(
        run_enrichment([_raw("alpha")], _settings(tmp_path), enricher=StubEnricher(), version="20240102T000000")
    )

    assert summary.failed_path is None
    assert not (tmp_path / "failed-enriched-20240102T000000.json").exists()


def test_enrich_latest_snapshot_uses_newest_raw_file_and_limit(tmp_path: Path) -> None:
    save_snapshot(tmp_path, "raw", "20240101T000000", [_raw("old").to_dict()])
    save_snapshot(tmp_path, "raw", "20240102T000000", [_raw(name).to_dict() for name in ("a", "b", "c")])

    summary = asyncio.run(enrich_latest_snapshot(_settings(tmp_path), limit=2, enricher=StubEnricher()))

    assert summary is not None
    assert summary.raw_count == 2
    enriched = json.loads(summary.enriched_path.read_text(encoding="utf-8"))
    assert sorted(item["codename"] for item in enriched) == ["a", "b"]


def test_enrich_latest_snapshot_dry_run_writes_nothing(tmp_path: Path) -> None:
    save_snapshot(tmp_path, "raw", "20240102T000000", [_raw("alpha").to_dict()])
    enricher = StubEnricher()

    result = asyncio.run(enrich_latest_snapshot(_settings(tmp_path), dry_run=True, enricher=enricher))

    assert result is None
    assert enricher.counter.total == 0
    assert sorted(path.name for path in tmp_path.iterdir()) == ["raw-20240102T000000.json"]


def test_enrich_latest_snapshot_requires_raw_snapshot(tmp_path: Path) -> None:
    with pytest.raises(PersistenceError, match="No raw snapshot"):
        asyncio.run(enrich_latest_snapshot(_settings(tmp_path), enricher=StubEnricher()))
