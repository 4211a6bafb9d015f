"""Stage 3: upload logos and upsert the latest enriched snapshot into Supabase."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests
from supabase import Client, create_client

from config import DEFAULT_PLACEHOLDER_PATH, Settings
from models import EnrichedRecord, FailureRecord
from snapshots import ENRICHED, FAILED_SEED, load_latest_snapshot, run_version, save_snapshot

REQUEST_TIMEOUT_SECONDS = 20
MAX_UPLOAD_ATTEMPTS = 3
DUPLICATE_KEY_ERROR = "duplicate key value"

LOGGER = logging.getLogger(__name__)


class UploadError(RuntimeError):
    """Neither the logo nor the placeholder image could be uploaded."""


@dataclass(slots=True)
class SeedResult:
    seeded: list[str] = field(default_factory=list)
    failed: list[FailureRecord] = field(default_factory=list)
    upserted_rows: int = 0
    failed_batches: int = 0
    report_path: Path | None = None


def logo_file_name(codename: str, index: int) -> str:
    return f"seed-{codename}-{index}-logo.png"


class ProductSeeder:
    """Write enriched records into the products table and logo bucket."""

    def __init__(
        self,
        client: Client,
        admin_user_id: str,
        bucket: str = "product-logos",
        batch_size: int = 50,
        placeholder_path: Path = DEFAULT_PLACEHOLDER_PATH,
        twitter_handle: str = "",
        contact_email: str = "",
        max_upload_attempts: int = MAX_UPLOAD_ATTEMPTS,
        http_get: Callable[..., requests.Response] = requests.get,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.admin_user_id = admin_user_id
        self.bucket = bucket
        self.batch_size = batch_size
        self.placeholder_path = placeholder_path
        self.twitter_handle = twitter_handle
        self.contact_email = contact_email
        self.max_upload_attempts = max_upload_attempts
        self._http_get = http_get
        self._sleep = sleep

    def _upload(self, file_name: str, content: bytes) -> None:
        self.client.storage.from_(self.bucket).upload(
            file_name,
            content,
            {"content-type": "image/png", "cache-control": "3600", "upsert": "true"},
        )

    def _fetch_image(self, url: str) -> bytes:
        response = self._http_get(url, timeout=REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        if not response.content:
            raise RuntimeError(f"Empty image body from {url}")
        return response.content

    def upload_logo(self, url: str, file_name: str) -> str:
        """Upload the image at ``url`` as ``file_name`` and return the stored name.

        Fetch/upload is retried with exponential backoff; after the last
        failure the bundled placeholder is uploaded under the same name,
        without further retries.
        """
        for attempt in range(1, self.max_upload_attempts + 1):
            try:
                LOGGER.debug("Fetching image from %s", url)
                content = self._fetch_image(url)
                self._upload(file_name, content)
                LOGGER.info("Uploaded logo %s from %s", file_name, url)
                return file_name
            except Exception as exc:  # fetch and storage failures are retried alike
                LOGGER.warning(
                    "Logo upload attempt %s/%s failed for %s: %s",
                    attempt,
                    self.max_upload_attempts,
                    url,
                    exc,
                )
                if attempt < self.max_upload_attempts:
                    self._sleep(2**attempt)

        LOGGER.info("Uploading placeholder logo as %s for %s", file_name, url)
        try:
            self._upload(file_name, self.placeholder_path.read_bytes())
        except Exception as exc:
            raise UploadError(f"Placeholder upload failed for {file_name}: {exc}") from exc
        return file_name

    def public_url(self, file_name: str) -> str:
        url = self.client.storage.from_(self.bucket).get_public_url(file_name)
        if not url:
            raise RuntimeError(f"Failed to get public URL for {file_name}")
        return url

    def get_or_create(self, table: str, name: str, skip_errors: tuple[str, ...] = ()) -> Any | None:
        """Return the id of the row named ``name`` in ``table``, inserting it if absent.

        Errors whose message contains one of ``skip_errors`` are logged and
        yield None instead of raising.
        """
        try:
            existing = self.client.table(table).select("id").eq("name", name).limit(1).execute()
            if existing.data:
                return existing.data[0]["id"]

            LOGGER.info("Creating %s row name=%s", table, name)
            created = self.client.table(table).insert({"name": name}).execute()
            if not created.data:
                raise RuntimeError(f"Insert into {table} returned no row for {name}")
            return created.data[0]["id"]
        except Exception as exc:
            if any(marker in str(exc) for marker in skip_errors):
                LOGGER.warning("Skipping error for %s in %s: %s", name, table, exc)
                return None
            raise

    def prepare_product(self, record: EnrichedRecord, index: int) -> dict[str, Any]:
        """Upload the logo, ensure taxonomy rows exist, and build the product row."""
        file_name = self.upload_logo(record.logo_src, logo_file_name(record.codename, index))
        logo_url = self.public_url(file_name)

        for label in record.labels:
            self.get_or_create("labels", label, skip_errors=(DUPLICATE_KEY_ERROR,))
        for tag in record.tags:
            self.get_or_create("tags", tag, skip_errors=(DUPLICATE_KEY_ERROR,))
        self.get_or_create("categories", record.category)

        return {
            "view_count": 0,
            "approved": True,
            "logo_src": logo_url,
            "user_id": self.admin_user_id or None,
            "full_name": record.full_name,
            "twitter_handle": self.twitter_handle,
            "email": self.contact_email,
            "codename": record.codename,
            "punchline": record.punchline,
            "categories": record.category,
            "tags": list(record.tags),
            "labels": list(record.labels),
            "description": record.description,
            "product_website": record.product_website,
        }

    def upsert_products(
        self, rows: list[dict[str, Any]]
    ) -> tuple[int, list[tuple[list[dict[str, Any]], str]]]:
        """Upsert rows keyed by codename in fixed-size batches.

        Duplicate codenames collapse to the last row. Returns
        ``(rows_upserted, failed_batches)`` where each failed batch is its rows
        and the error message; a failed batch does not stop the rest.
        """
        unique_rows = list({row["codename"]: row for row in rows}.values())
        upserted = 0
        failed_batches: list[tuple[list[dict[str, Any]], str]] = []

        for start in range(0, len(unique_rows), self.batch_size):
            batch = unique_rows[start:start + self.batch_size]
            batch_number = start // self.batch_size + 1
            try:
                self.client.table("products").upsert(batch, on_conflict="codename").execute()
            except Exception as exc:
                failed_batches.append((batch, str(exc)))
                LOGGER.error("Error upserting products batch %s: %s", batch_number, exc)
                continue
            upserted += len(batch)
            LOGGER.info("Upserted products batch %s (%s rows)", batch_number, len(batch))

        return upserted, failed_batches

    def seed(self, records: list[EnrichedRecord]) -> SeedResult:
        """Seed every record; a failure only drops that record."""
        result = SeedResult()
        rows: list[dict[str, Any]] = []
        prepared: list[EnrichedRecord] = []

        for index, record in enumerate(records):
            try:
                rows.append(self.prepare_product(record, index))
                prepared.append(record)
            except Exception as exc:  # broad by design: isolate per-record failures
                LOGGER.exception("Skipping product %s: %s", record.product_website, exc)
                result.failed.append(FailureRecord(record=record, error=str(exc)))

        result.upserted_rows, failed_batches = self.upsert_products(rows)
        result.failed_batches = len(failed_batches)

        # every record sharing a codename with a failed row failed with it
        upsert_errors: dict[str, str] = {}
        for batch, error in failed_batches:
            for row in batch:
                upsert_errors[row["codename"]] = error

        for record in prepared:
            error = upsert_errors.get(record.codename)
            if error is None:
                result.seeded.append(record.codename)
            else:
                result.failed.append(FailureRecord(record=record, error=f"upsert failed: {error}"))
        return result


def build_supabase_client(settings: Settings) -> Client:
    if not settings.supabase_url:
        raise RuntimeError("SUPABASE_URL environment variable is required")
    if not settings.supabase_key:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")
    return create_client(settings.supabase_url, settings.supabase_key)


def seed_latest_snapshot(
    settings: Settings,
    dry_run: bool = False,
    seeder: ProductSeeder | None = None,
) -> SeedResult | None:
    """Seed the newest enriched snapshot and write the failure report.

    Raises PersistenceError when no enriched snapshot exists or the report
    cannot be written. Returns None for a dry run.
    """
    _, items = load_latest_snapshot(settings.data_dir, ENRICHED)
    records = [EnrichedRecord.from_dict(item) for item in items]

    if dry_run:
        for index, record in enumerate(records):
            LOGGER.info("[dry-run] Would seed: %s as %s", record.codename, logo_file_name(record.codename, index))
        return None

    if seeder is None:
        seeder = ProductSeeder(
            client=build_supabase_client(settings),
            admin_user_id=settings.admin_user_id,
            bucket=settings.logo_bucket,
            batch_size=settings.seed_batch_size,
            placeholder_path=settings.placeholder_path,
            twitter_handle=settings.twitter_handle,
            contact_email=settings.contact_email,
        )

    LOGGER.info("Seeding %s enriched records", len(records))
    result = seeder.seed(records)
    result.report_path = save_snapshot(
        settings.data_dir, FAILED_SEED, run_version(), [item.to_dict() for item in result.failed]
    )

    LOGGER.info(
        "Seeding completed. seeded=%s failed=%s upserted_rows=%s failed_batches=%s",
        len(result.seeded),
        len(result.failed),
        result.upserted_rows,
        result.failed_batches,
    )
    return result
