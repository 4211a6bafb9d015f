"""Stage 2 core: per-record enrichment as an ordered chain of attempt states.

Each record moves through at most three distinct recovery strategies:

  SEPARATE_REQUESTS  fast-tier details + filters calls in parallel, a single
                     smart-tier repair call when tags/labels are off-taxonomy,
                     then strict validation of the combined candidate.
  FIX_PROMPT         one smart-tier call with the full-repair prompt.
  FALLBACK_MODEL     one smart-tier call with the one-shot enrichment prompt.

A state is entered only when the previous one raised. When the last state
fails the record is reported with EnrichmentFailed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from llm_client import ModelClient, Tier
from models import UNDEFINED_CATEGORY, EnrichedRecord, EnrichmentCandidate, RawRecord
from prompts import (
    build_details_prompt,
    build_enrichment_prompt,
    build_filters_prompt,
    build_fix_prompt,
    build_label_tag_repair_prompt,
)
from schemas import (
    DETAILS_SCHEMA,
    FILTERS_SCHEMA,
    REPAIR_SCHEMA,
    STRICT_SCHEMA,
    Schema,
    ValidationError,
    filter_labels,
    filter_tags,
    invalid_labels_tags,
    validate_candidate,
)

DEFAULT_MAX_ATTEMPTS = 3

LOGGER = logging.getLogger(__name__)


class AttemptState(Enum):
    SEPARATE_REQUESTS = "separate_requests"
    FIX_PROMPT = "fix_prompt"
    FALLBACK_MODEL = "fallback_model"


ATTEMPT_SEQUENCE: tuple[AttemptState, ...] = (
    AttemptState.SEPARATE_REQUESTS,
    AttemptState.FIX_PROMPT,
    AttemptState.FALLBACK_MODEL,
)


class EnrichmentFailed(RuntimeError):
    """Every attempt state failed for one record."""

    def __init__(self, record: RawRecord, last_error: BaseException | None) -> None:
        self.record = record
        self.last_error = last_error
        super().__init__(f"Enrichment failed for codename={record.codename}: {last_error}")


class CandidateRejected(ValidationError):
    """The combined candidate of an attempt failed strict validation."""

    def __init__(self, candidate: EnrichmentCandidate, cause: ValidationError) -> None:
        super().__init__(cause.errors, schema=cause.schema)
        self.candidate = candidate


class CallCounter:
    """Per-tier model call totals shared by all records of a batch run."""

    def __init__(self) -> None:
        self._counts: Counter[Tier] = Counter()
        self._lock = threading.Lock()

    def increment(self, tier: Tier, amount: int = 1) -> None:
        with self._lock:
            self._counts[tier] += amount

    def get(self, tier: Tier) -> int:
        with self._lock:
            return self._counts[tier]

    @property
    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {tier.value: self._counts[tier] for tier in Tier}


@dataclass(slots=True)
class AttemptContext:
    """Ephemeral bookkeeping for one record's pass through the states."""

    record: RawRecord
    counter: CallCounter
    attempt: int = 0
    state: AttemptState | None = None
    calls: Counter[Tier] = field(default_factory=Counter)
    rejected_candidate: EnrichmentCandidate | None = None

    def record_call(self, tier: Tier) -> None:
        self.calls[tier] += 1
        self.counter.increment(tier)


StateHandler = Callable[[AttemptContext], Awaitable[EnrichmentCandidate]]


class Enricher:
    """Turn a RawRecord into an EnrichedRecord using the attempt states in order."""

    def __init__(
        self,
        clients: dict[Tier, ModelClient],
        counter: CallCounter | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        fix_prompt_with_candidate: bool = False,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.clients = clients
        self.counter = counter if counter is not None else CallCounter()
        self.max_attempts = max_attempts
        # when False the fix prompt gets an empty object, not the rejected candidate
        self.fix_prompt_with_candidate = fix_prompt_with_candidate
        self._handlers: dict[AttemptState, StateHandler] = {
            AttemptState.SEPARATE_REQUESTS: self.run_separate_requests,
            AttemptState.FIX_PROMPT: self.run_fix_prompt,
            AttemptState.FALLBACK_MODEL: self.run_fallback_model,
        }

    @staticmethod
    def state_for_attempt(attempt: int) -> AttemptState:
        """Map a 1-based attempt number to its state; extra attempts repeat the last."""
        return ATTEMPT_SEQUENCE[min(attempt, len(ATTEMPT_SEQUENCE)) - 1]

    async def enrich(self, record: RawRecord) -> EnrichedRecord:
        """Run the attempt chain for one record.

        Raises EnrichmentFailed once ``max_attempts`` states have failed.
        """
        context = AttemptContext(record=record, counter=self.counter)
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            context.attempt = attempt
            context.state = self.state_for_attempt(attempt)
            LOGGER.info(
                "Enriching codename=%s attempt=%s/%s state=%s",
                record.codename,
                attempt,
                self.max_attempts,
                context.state.value,
            )
            try:
                candidate = await self._handlers[context.state](context)
            except Exception as exc:  # any failure advances to the next state
                last_error = exc
                LOGGER.warning(
                    "Enrichment attempt %s/%s (%s) failed for codename=%s: %s",
                    attempt,
                    self.max_attempts,
                    context.state.value,
                    record.codename,
                    exc,
                )
                continue

            LOGGER.info(
                "Enriched codename=%s in state=%s (fast_calls=%s smart_calls=%s)",
                record.codename,
                context.state.value,
                context.calls[Tier.FAST],
                context.calls[Tier.SMART],
            )
            return EnrichedRecord.from_candidate(record, candidate)

        LOGGER.error("Enrichment exhausted for codename=%s: %s", record.codename, last_error)
        raise EnrichmentFailed(record, last_error)

    async def _generate(
        self, context: AttemptContext, tier: Tier, schema: Schema, prompt: str
    ) -> dict[str, Any]:
        context.record_call(tier)
        return await self.clients[tier].generate(schema, prompt)

    async def run_separate_requests(self, context: AttemptContext) -> EnrichmentCandidate:
        record = context.record
        details, filters = await asyncio.gather(
            self._generate(
                context,
                Tier.FAST,
                DETAILS_SCHEMA,
                build_details_prompt(record.codename, record.description, record.site_content),
            ),
            self._generate(
                context,
                Tier.FAST,
                FILTERS_SCHEMA,
                build_filters_prompt(record.codename, record.description, record.site_content),
            ),
        )

        tags = list(filters.get("tags") or [])
        labels = list(filters.get("labels") or [])
        bad_tags, bad_labels = invalid_labels_tags(tags, labels)
        if bad_tags or bad_labels:
            LOGGER.info(
                "Repairing taxonomy for codename=%s invalid_tags=%s invalid_labels=%s",
                record.codename,
                bad_tags,
                bad_labels,
            )
            repaired = await self._generate(
                context,
                Tier.SMART,
                REPAIR_SCHEMA,
                build_label_tag_repair_prompt(tags=tags, labels=labels),
            )
            tags = list(repaired["tags"])
            labels = list(repaired["labels"])

        candidate = EnrichmentCandidate(
            codename=details["codename"],
            punchline=details["punchline"],
            description=details["description"],
            tags=filter_tags(tags),
            labels=filter_labels(labels),
            category=(filters.get("category") or UNDEFINED_CATEGORY).strip().lower(),
        )

        try:
            return validate_candidate(candidate)
        except ValidationError as exc:
            context.rejected_candidate = candidate
            raise CandidateRejected(candidate, exc) from exc

    async def run_fix_prompt(self, context: AttemptContext) -> EnrichmentCandidate:
        record = context.record
        failed_output: dict[str, Any] = {}
        if self.fix_prompt_with_candidate and context.rejected_candidate is not None:
            failed_output = context.rejected_candidate.to_dict()

        prompt = build_fix_prompt(record.codename, record.description, record.site_content, failed_output)
        result = await self._generate(context, Tier.SMART, STRICT_SCHEMA, prompt)
        return _strict_candidate(result)

    async def run_fallback_model(self, context: AttemptContext) -> EnrichmentCandidate:
        record = context.record
        prompt = build_enrichment_prompt(record.codename, record.description, record.site_content)
        result = await self._generate(context, Tier.SMART, STRICT_SCHEMA, prompt)
        return _strict_candidate(result)


def _strict_candidate(result: dict[str, Any]) -> EnrichmentCandidate:
    """Build a candidate from strict-schema output, lowercasing taxonomy values."""
    candidate = EnrichmentCandidate(
        codename=result["codename"],
        punchline=result["punchline"],
        description=result["description"],
        tags=[tag.strip().lower() for tag in result["tags"]],
        labels=[label.strip().lower() for label in result["labels"]],
        category=result["category"].strip().lower(),
    )
    return validate_candidate(candidate)
