"""Stage 1: crawl seed URLs with headless Chromium and snapshot basic page metadata."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from urllib.parse import urljoin

from playwright.async_api import Browser, Page, async_playwright

from config import Settings
from models import RawRecord
from snapshots import RAW, run_version, save_snapshot

DEFAULT_MAX_ATTEMPTS = 3
DESCRIPTION_MAX_LEN = 500
DEFAULT_DESCRIPTION = "No Description"
DEFAULT_LOGO = "./icon.png"
SEED_OWNER_NAME = "seed-admin-user"

_LOGO_SELECTORS = ("meta[property='og:image']", "meta[name='twitter:image']")
_HEADING_TAGS = ("h1", "h2", "h3")
_TEXT_CONTENTS_JS = "els => els.map(el => el.textContent).filter(text => text)"

LOGGER = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """A URL could not be scraped within the allowed attempts."""


def slugify_title(title: str) -> str:
    """Turn a page title into a codename: whitespace runs become '-', lowercase."""
    return re.sub(r"\s+", "-", title).lower()


def build_raw_record(
    url: str,
    title: str,
    description: str | None,
    logo_src: str | None,
    headings: list[str],
) -> RawRecord:
    """Assemble a RawRecord from the values scraped off one page."""
    logo = logo_src or DEFAULT_LOGO
    if not logo.startswith("http"):
        logo = urljoin(url, logo)

    return RawRecord(
        codename=slugify_title(title),
        product_website=url,
        punchline=title,
        description=(description or DEFAULT_DESCRIPTION)[:DESCRIPTION_MAX_LEN],
        site_content=" ".join(headings),
        logo_src=logo,
        full_name=SEED_OWNER_NAME,
    )


async def _first_attribute(page: Page, selectors: tuple[str, ...], attribute: str) -> str | None:
    for selector in selectors:
        element = await page.query_selector(selector)
        if element is None:
            continue
        value = await element.get_attribute(attribute)
        if value:
            return value
    return None


async def scrape_page(browser: Browser, url: str, timeout_seconds: float) -> RawRecord:
    """Open ``url`` in a fresh page and extract its metadata."""
    page = await browser.new_page()
    try:
        LOGGER.info("Processing %s...", url)
        response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_seconds * 1000)
        if response is not None and not response.ok:
            raise FetchError(f"HTTP {response.status} for {url}")

        title = await page.title()
        description = await _first_attribute(page, ("meta[name='description']",), "content")
        logo_src = await _first_attribute(page, _LOGO_SELECTORS, "content")
        if not logo_src:
            logo_src = await _first_attribute(page, ("img",), "src")

        headings: list[str] = []
        for tag in _HEADING_TAGS:
            headings.extend(await page.eval_on_selector_all(tag, _TEXT_CONTENTS_JS))
    finally:
        await page.close()

    record = build_raw_record(url, title, description, logo_src, headings)
    LOGGER.debug("Scraped codename=%s from %s", record.codename, url)
    return record


async def fetch_with_retry(
    url: str,
    scrape: Callable[[str], Awaitable[RawRecord]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> RawRecord:
    """Scrape ``url``, retrying up to ``max_attempts`` times; raise FetchError after."""
    last_error: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await scrape(url)
        except Exception as exc:  # navigation/timeouts/HTTP errors are all retried
            last_error = exc
            LOGGER.warning("Request %s failed on attempt %s/%s: %s", url, attempt, max_attempts, exc)

    raise FetchError(f"Request {url} failed after {max_attempts} attempts: {last_error}")


async def crawl_urls(
    urls: list[str],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    concurrency: int = 5,
    timeout_seconds: float = 30.0,
) -> list[RawRecord]:
    """Crawl every distinct URL; abandoned URLs are logged and left out of the result."""
    urls = list(dict.fromkeys(urls))
    semaphore = asyncio.Semaphore(concurrency)

    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=True)

        async def _scrape(url: str) -> RawRecord:
            return await scrape_page(browser, url, timeout_seconds)

        async def _crawl_one(url: str) -> RawRecord | None:
            async with semaphore:
                try:
                    return await fetch_with_retry(url, _scrape, max_attempts=max_attempts)
                except FetchError as exc:
                    LOGGER.error("%s", exc)
                    return None

        try:
            results = await asyncio.gather(*(_crawl_one(url) for url in urls))
        finally:
            await browser.close()

    records = [record for record in results if record is not None]
    LOGGER.info(
        "Crawler finished. urls=%s scraped=%s abandoned=%s",
        len(urls),
        len(records),
        len(urls) - len(records),
    )
    return records


async def crawl_and_save(urls: list[str], settings: Settings) -> Path:
    """Crawl ``urls`` and write the full result as one raw snapshot."""
    version = run_version()
    LOGGER.info("Starting crawler with %s start URLs", len(urls))
    records = await crawl_urls(
        urls,
        max_attempts=settings.crawl_max_attempts,
        concurrency=settings.crawl_concurrency,
        timeout_seconds=settings.crawl_timeout_seconds,
    )
    return save_snapshot(settings.data_dir, RAW, version, [record.to_dict() for record in records])
