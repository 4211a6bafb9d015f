"""Response schemas and taxonomy validation for enrichment output."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from models import EnrichmentCandidate
from taxonomy import (
    ALLOWED_LABELS,
    CATEGORIES,
    MAX_LABELS,
    MAX_TAGS,
    TAGS,
    is_label,
    is_tag,
    normalize,
)


class ValidationError(RuntimeError):
    """Raised when data falls outside a schema or the taxonomy."""

    def __init__(self, errors: list[str], schema: str | None = None) -> None:
        self.errors = list(errors)
        self.schema = schema
        prefix = f"{schema}: " if schema else ""
        super().__init__(prefix + "; ".join(self.errors))


@dataclass(frozen=True, slots=True)
class Schema:
    """A named JSON object schema understood by both the prompt and the parser.

    Only the subset of JSON Schema needed here is supported: ``string`` and
    ``array`` types, nullable types via ``["string", "null"]``, ``enum``
    (compared case-insensitively) and ``maxItems``.
    """

    name: str
    properties: dict[str, dict[str, Any]]
    required: tuple[str, ...]

    def describe(self) -> str:
        """Render the schema as JSON for embedding in a system prompt."""
        return json.dumps(
            {
                "type": "object",
                "properties": self.properties,
                "required": list(self.required),
            },
            indent=2,
        )

    def parse(self, data: Any) -> dict[str, Any]:
        """Return only this schema's fields from ``data`` or raise ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError(["expected a JSON object"], schema=self.name)

        errors: list[str] = [f"missing field {key!r}" for key in self.required if key not in data]
        for key, rules in self.properties.items():
            if key in data:
                errors.extend(_check_value(key, data[key], rules))

        if errors:
            raise ValidationError(errors, schema=self.name)
        return {key: data[key] for key in self.properties if key in data}


def _check_value(path: str, value: Any, rules: dict[str, Any]) -> list[str]:
    raw_type = rules.get("type", "string")
    types = raw_type if isinstance(raw_type, list) else [raw_type]

    if value is None:
        return [] if "null" in types else [f"{path}: must not be null"]

    if "string" in types:
        if not isinstance(value, str):
            return [f"{path}: expected a string, got {type(value).__name__}"]
        allowed = rules.get("enum")
        if allowed is not None and normalize(value) not in allowed:
            return [f"{path}: {value!r} is not an allowed value"]
        return []

    if "array" in types:
        if not isinstance(value, list):
            return [f"{path}: expected an array, got {type(value).__name__}"]
        errors: list[str] = []
        max_items = rules.get("maxItems")
        if max_items is not None and len(value) > max_items:
            errors.append(f"{path}: at most {max_items} items allowed, got {len(value)}")
        item_rules = rules.get("items", {"type": "string"})
        for index, item in enumerate(value):
            errors.extend(_check_value(f"{path}[{index}]", item, item_rules))
        return errors

    return [f"{path}: unsupported schema type {raw_type!r}"]


_STRING: dict[str, Any] = {"type": "string"}
_STRING_ARRAY: dict[str, Any] = {"type": "array", "items": {"type": "string"}}

DETAILS_SCHEMA = Schema(
    name="details",
    properties={
        "codename": _STRING,
        "punchline": _STRING,
        "description": _STRING,
    },
    required=("codename", "punchline", "description"),
)

# Tags and labels are free strings here; they are checked against the
# taxonomy afterwards so invalid values can be repaired instead of rejected.
FILTERS_SCHEMA = Schema(
    name="filters",
    properties={
        "category": {"type": ["string", "null"], "enum": list(CATEGORIES)},
        "tags": _STRING_ARRAY,
        "labels": _STRING_ARRAY,
    },
    required=("tags", "labels"),
)

REPAIR_SCHEMA = Schema(
    name="label_tag_repair",
    properties={
        "tags": _STRING_ARRAY,
        "labels": _STRING_ARRAY,
    },
    required=("tags", "labels"),
)

STRICT_SCHEMA = Schema(
    name="strict",
    properties={
        "category": {"type": "string", "enum": list(CATEGORIES)},
        "tags": {
            "type": "array",
            "items": {"type": "string", "enum": list(TAGS)},
            "maxItems": MAX_TAGS,
        },
        "labels": {
            "type": "array",
            "items": {"type": "string", "enum": sorted(set(ALLOWED_LABELS))},
            "maxItems": MAX_LABELS,
        },
        "codename": _STRING,
        "punchline": _STRING,
        "description": _STRING,
    },
    required=("category", "tags", "labels", "codename", "punchline", "description"),
)


def invalid_labels_tags(tags: list[Any], labels: list[Any]) -> tuple[list[Any], list[Any]]:
    """Return the tags and labels that are not in the taxonomy.

    Only membership is checked; over-long lists are truncated later rather
    than treated as invalid.
    """
    bad_tags = [tag for tag in tags if not (isinstance(tag, str) and is_tag(tag))]
    bad_labels = [label for label in labels if not (isinstance(label, str) and is_label(label))]
    return bad_tags, bad_labels


def filter_tags(tags: list[Any]) -> list[str]:
    """Keep allowed tags in their original order, capped at MAX_TAGS."""
    return [normalize(tag) for tag in tags if isinstance(tag, str) and is_tag(tag)][:MAX_TAGS]


def filter_labels(labels: list[Any]) -> list[str]:
    """Keep allowed labels in their original order, capped at MAX_LABELS."""
    return [
        normalize(label) for label in labels if isinstance(label, str) and is_label(label)
    ][:MAX_LABELS]


def validate_candidate(candidate: EnrichmentCandidate) -> EnrichmentCandidate:
    """Strict top-level check of a combined candidate.

    Checks category, then tags, then labels (membership and caps), then the
    detail strings. Empty strings are accepted. The candidate is returned
    untouched on success.
    """
    STRICT_SCHEMA.parse(candidate.to_dict())
    return candidate
