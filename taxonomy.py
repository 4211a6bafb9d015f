"""Static category / label / tag tables used to classify products."""

from __future__ import annotations

CATEGORIES: tuple[str, ...] = ("dev", "design", "learning", "media")

LABELS_BY_CATEGORY: dict[str, tuple[str, ...]] = {
    "dev": ("frontend", "backend", "devops", "ui"),
    "design": (
        "ui",
        "graphic",
        "systems",
        "kits",
        "icons",
        "gradients",
        "tools",
        "typography",
        "fonts",
        "patterns",
        "showcases",
    ),
    "learning": (
        "courses",
        "tutorials",
        "blogs",
        "articles",
        "studies",
        "docs",
        "references",
    ),
    "media": ("stock", "images", "videos", "editing"),
}

# Flattened in category order; "ui" is listed under both dev and design.
ALLOWED_LABELS: tuple[str, ...] = tuple(
    label for labels in LABELS_BY_CATEGORY.values() for label in labels
)

TAGS: tuple[str, ...] = (
    "libraries",
    "frameworks",
    "components",
    "state",
    "databases",
    "api",
    "ci/cd",
    "deployment",
    "monitoring",
    "design systems",
    "ui kits",
    "icons",
    "gradients",
    "tools",
    "reactjs",
    "nextjs",
    "tailwindcss",
    "figma",
)

LABEL_SET: frozenset[str] = frozenset(ALLOWED_LABELS)
TAG_SET: frozenset[str] = frozenset(TAGS)

MAX_TAGS = 4
MAX_LABELS = 3


def normalize(value: str) -> str:
    """Lowercase/strip form used for every membership check."""
    return value.strip().lower()


def is_label(value: str) -> bool:
    return normalize(value) in LABEL_SET


def is_tag(value: str) -> bool:
    return normalize(value) in TAG_SET
