"""Shared typed models for the seed pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

UNDEFINED_CATEGORY = "undefined"


@dataclass(frozen=True, slots=True)
class RawRecord:
    """One crawled page, as written to the raw snapshot.

    ``codename`` is the record identifier (slugged page title) and
    ``punchline`` the page title; both are replaced during enrichment.
    """

    codename: str
    product_website: str
    punchline: str
    description: str
    site_content: str
    logo_src: str = ""
    full_name: str = "seed-admin-user"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawRecord:
        return cls(
            codename=_as_str(data.get("codename")),
            product_website=_as_str(data.get("product_website")),
            punchline=_as_str(data.get("punchline")),
            description=_as_str(data.get("description")),
            site_content=_as_str(data.get("site_content")),
            logo_src=_as_str(data.get("logo_src")),
            full_name=_as_str(data.get("full_name")) or "seed-admin-user",
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class EnrichmentCandidate:
    """In-progress result of one enrichment attempt."""

    codename: str
    punchline: str
    description: str
    tags: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    category: str = UNDEFINED_CATEGORY

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class EnrichedRecord:
    """A raw record merged with a validated candidate."""

    codename: str
    product_website: str
    punchline: str
    description: str
    site_content: str
    logo_src: str
    full_name: str
    tags: tuple[str, ...]
    labels: tuple[str, ...]
    category: str

    @classmethod
    def from_candidate(cls, record: RawRecord, candidate: EnrichmentCandidate) -> EnrichedRecord:
        return cls(
            codename=candidate.codename,
            product_website=record.product_website,
            punchline=candidate.punchline,
            description=candidate.description,
            site_content=record.site_content,
            logo_src=record.logo_src,
            full_name=record.full_name,
            tags=tuple(candidate.tags),
            labels=tuple(candidate.labels),
            category=candidate.category,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnrichedRecord:
        # Older snapshots stored the category under the database column name.
        category = data.get("category") or data.get("categories") or UNDEFINED_CATEGORY
        return cls(
            codename=_as_str(data.get("codename")),
            product_website=_as_str(data.get("product_website")),
            punchline=_as_str(data.get("punchline")),
            description=_as_str(data.get("description")),
            site_content=_as_str(data.get("site_content")),
            logo_src=_as_str(data.get("logo_src")),
            full_name=_as_str(data.get("full_name")) or "seed-admin-user",
            tags=tuple(data.get("tags") or ()),
            labels=tuple(data.get("labels") or ()),
            category=category,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["tags"] = list(self.tags)
        data["labels"] = list(self.labels)
        return data


@dataclass(frozen=True, slots=True)
class FailureRecord:
    """A record that could not be processed, with the reason."""

    record: RawRecord | EnrichedRecord
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {**self.record.to_dict(), "error": self.error}


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""
