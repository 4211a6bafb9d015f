"""Prompt text for each enrichment sub-task."""

from __future__ import annotations

import json
import re
from typing import Any

from taxonomy import ALLOWED_LABELS, CATEGORIES, LABELS_BY_CATEGORY, TAGS

DETAILS_CONTENT_LIMIT = 300
CONTENT_LIMIT = 400

_EXAMPLE_INPUT = """- Input
Site Name: "PixelPerfect"
Site Description: "A comprehensive design tool for creating pixel-perfect UI components and prototypes."
Site Content: "PixelPerfect - Design stunning UIs - Create precise prototypes - Perfect your design workflow\""""

_EXAMPLE_DETAILS = {
    "codename": "Pixel Perfect UI",
    "punchline": "Perfect Your Pixels",
    "description": (
        "A comprehensive design tool for creating pixel-perfect UI components and "
        "prototypes, enhancing your design workflow with precision."
    ),
}

_EXAMPLE_FILTERS = {
    "category": "design",
    "labels": ["ui", "tools"],
    "tags": ["design systems", "ui kits", "icons"],
}

_FIELD_DEFINITIONS = """Codename: A concise and memorable name for the product.
Punchline: A short, catchy phrase that encapsulates the product's value proposition.
Description: A brief explanation of the product, highlighting its key features and benefits."""

_TAXONOMY_RULES = """- Ensure all tags, labels, and category are lowercase.
- Maximum of 3 tags, 2 labels, and 1 category.
- Avoid inventing new options. ONLY USE the CATEGORY OPTIONS, LABEL OPTIONS, and TAG OPTIONS."""


def prepare_content(content: str, limit: int = CONTENT_LIMIT) -> str:
    """Truncate page text and normalize it into period-terminated sentences."""
    cleaned = re.sub(r"\s\s+", " ", content[:limit]).strip()
    sentences = [sentence.strip() + "." for sentence in cleaned.split(". ")]
    return " ".join(sentences)


def _taxonomy_options() -> str:
    label_lines = "\n".join(
        f"- {category}: {json.dumps(list(labels))}"
        for category, labels in LABELS_BY_CATEGORY.items()
    )
    return (
        "CATEGORY OPTIONS:\n"
        f"- {json.dumps(list(CATEGORIES))}\n\n"
        "LABEL OPTIONS:\n"
        f"{label_lines}\n\n"
        "TAG OPTIONS:\n"
        f"- {json.dumps(list(TAGS))}"
    )


def _product_input(name: str, description: str, content: str) -> str:
    lines = [
        "- Input",
        f'Site Name: "{name}"',
        f'Site Description: "{description}"',
    ]
    if content:
        lines.append(f'Site Content: "{content}"')
    lines.append("- Output")
    return "\n".join(lines)


def build_details_prompt(name: str, description: str, content: str) -> str:
    """Prompt for codename, punchline and description only."""
    excerpt = prepare_content(content, DETAILS_CONTENT_LIMIT) if content else ""
    example = {"category": "design", **_EXAMPLE_DETAILS}
    return (
        "# Objective\n"
        "Enrich the following product with relevant category, codename, punchline, and description.\n\n"
        "# Examples\n"
        "Example 1:\n"
        f"{_EXAMPLE_INPUT}\n"
        "- Output\n"
        f"{json.dumps(example, indent=2)}\n\n"
        "## Definitions\n"
        "Categories (broad):\n"
        f"- {json.dumps(list(CATEGORIES))}\n"
        f"{_FIELD_DEFINITIONS}\n\n"
        "# Your Turn\n"
        f"{_product_input(name, description, excerpt)}\n"
    )


def build_filters_prompt(name: str, description: str, content: str) -> str:
    """Prompt for category, labels and tags only."""
    excerpt = prepare_content(content, CONTENT_LIMIT) if content else ""
    return (
        "# Objective\n"
        "Enrich the following product with relevant tags, labels, and category.\n\n"
        "## Examples\n"
        "Example 1:\n"
        f"{_EXAMPLE_INPUT}\n"
        "- Output\n"
        f"{json.dumps(_EXAMPLE_FILTERS, indent=2)}\n\n"
        "## Definitions\n"
        f"{_taxonomy_options()}\n\n"
        "## Instructions\n"
        f"{_TAXONOMY_RULES}\n\n"
        "# Your Turn\n"
        f"{_product_input(name, description, excerpt)}\n"
    )


def build_label_tag_repair_prompt(tags: list[Any], labels: list[Any]) -> str:
    """Prompt asking the model to map invalid labels and tags onto the taxonomy."""
    return (
        "# Objective\n"
        "Revise the following labels and tags to match the LABEL AND TAG OPTIONS.\n\n"
        "LABEL OPTIONS:\n"
        f"- {json.dumps(list(ALLOWED_LABELS))}\n\n"
        "TAG OPTIONS:\n"
        f"- {json.dumps(list(TAGS))}\n\n"
        "# Input\n"
        f"labels to fix: {json.dumps(labels)}\n"
        f"tags to fix: {json.dumps(tags)}\n\n"
        "# Output\n"
    )


def build_enrichment_prompt(name: str, description: str, content: str) -> str:
    """One-shot prompt for the complete taxonomy and details."""
    excerpt = prepare_content(content, CONTENT_LIMIT) if content else ""
    example = {**_EXAMPLE_FILTERS, **_EXAMPLE_DETAILS}
    return (
        "# Examples\n"
        "Example 1:\n"
        f"{_EXAMPLE_INPUT}\n"
        "- Output\n"
        f"{json.dumps(example, indent=2)}\n\n"
        "# Objective\n"
        "Enrich the following product with relevant tags, labels, category, codename, "
        "punchline, and description.\n\n"
        "## Instructions\n"
        f"{_TAXONOMY_RULES}\n\n"
        "### Definitions\n"
        f"{_taxonomy_options()}\n"
        f"{_FIELD_DEFINITIONS}\n\n"
        f"{_product_input(name, description, excerpt)}\n"
    )


def build_fix_prompt(
    name: str,
    description: str,
    content: str,
    failed_output: dict[str, Any],
) -> str:
    """Prompt asking the model to regenerate a full record after a failed attempt.

    The content excerpt is truncated but not sentence-normalized.
    """
    excerpt = content[:CONTENT_LIMIT] if content else ""
    return (
        "# Objective\n"
        "The previous attempt to enrich the product data failed with the following output:\n"
        f"{json.dumps(failed_output, indent=2)}\n\n"
        "Please fix the specific errors in the failed output, particularly with the labels "
        "and tags, to generate a corrected response that matches the expected schema.\n\n"
        "## Instructions\n"
        "- Ensure all tags, labels, and category are lowercase and selected ONLY from the "
        "provided options.\n"
        "- Maximum of 3 tags, 2 labels, and 1 category.\n\n"
        "### Definitions\n"
        f"{_taxonomy_options()}\n"
        f"{_FIELD_DEFINITIONS}\n\n"
        f"{_product_input(name, description, excerpt)}\n"
    )
