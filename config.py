"""Environment-driven settings, resolved once at startup and passed down."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_OPENAI = "openai"

# (fast tier, smart tier) defaults per provider
DEFAULT_MODELS: dict[str, tuple[str, str]] = {
    PROVIDER_ANTHROPIC: ("claude-3-5-haiku-latest", "claude-sonnet-4-5"),
    PROVIDER_OPENAI: ("gpt-4o-mini", "gpt-4o"),
}

DEFAULT_PLACEHOLDER_PATH = Path(__file__).resolve().parent / "assets" / "placeholder.png"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True)
class Settings:
    """All runtime configuration for one pipeline run."""

    provider: str
    api_key: str
    fast_model: str
    smart_model: str
    temperature: float = 0.1
    llm_timeout_seconds: float = 60.0
    max_attempts: int = 3
    concurrency: int = 2
    rate_limit: int = 7
    rate_interval_seconds: float = 10.0
    fix_prompt_with_candidate: bool = False
    data_dir: Path = Path("__data__")
    crawl_max_attempts: int = 3
    crawl_concurrency: int = 5
    crawl_timeout_seconds: float = 30.0
    supabase_url: str = ""
    supabase_key: str = ""
    admin_user_id: str = ""
    logo_bucket: str = "product-logos"
    seed_batch_size: int = 50
    placeholder_path: Path = DEFAULT_PLACEHOLDER_PATH
    twitter_handle: str = ""
    contact_email: str = "contact@example.com"


def resolve_provider(explicit: str | None, anthropic_key: str, openai_key: str) -> str:
    """Pick the LLM provider: an explicit choice wins, else whichever key is set.

    Anthropic is preferred when both keys are present. Returns an empty string
    when nothing is configured; the model client reports that when built.
    """
    if explicit:
        choice = explicit.strip().lower()
        if choice not in DEFAULT_MODELS:
            raise RuntimeError(f"Unsupported LLM_PROVIDER: {explicit!r}")
        return choice
    if anthropic_key:
        return PROVIDER_ANTHROPIC
    if openai_key:
        return PROVIDER_OPENAI
    return ""


def load_settings() -> Settings:
    """Read the process environment into a Settings object."""
    anthropic_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
    openai_key = os.getenv("OPENAI_API_KEY", "").strip()
    provider = resolve_provider(os.getenv("LLM_PROVIDER"), anthropic_key, openai_key)

    fast_default, smart_default = DEFAULT_MODELS.get(provider, ("", ""))
    api_key = anthropic_key if provider == PROVIDER_ANTHROPIC else openai_key

    return Settings(
        provider=provider,
        api_key=api_key,
        fast_model=os.getenv("FAST_MODEL", fast_default),
        smart_model=os.getenv("SMART_MODEL", smart_default),
        temperature=float(os.getenv("LLM_TEMPERATURE", "0.1")),
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "60")),
        max_attempts=int(os.getenv("ENRICH_MAX_ATTEMPTS", "3")),
        concurrency=int(os.getenv("ENRICH_CONCURRENCY", "2")),
        rate_limit=int(os.getenv("ENRICH_RATE_LIMIT", "7")),
        rate_interval_seconds=float(os.getenv("ENRICH_RATE_INTERVAL_SECONDS", "10")),
        fix_prompt_with_candidate=os.getenv("ENRICH_FIX_PROMPT_WITH_CANDIDATE", "").lower()
        in _TRUE_VALUES,
        data_dir=Path(os.getenv("SEED_DATA_DIR", "__data__")),
        crawl_max_attempts=int(os.getenv("CRAWL_MAX_ATTEMPTS", "3")),
        crawl_concurrency=int(os.getenv("CRAWL_CONCURRENCY", "5")),
        crawl_timeout_seconds=float(os.getenv("CRAWL_TIMEOUT_SECONDS", "30")),
        supabase_url=os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL", ""),
        supabase_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
        admin_user_id=os.getenv("SUPABASE_ADMIN_ID", ""),
        logo_bucket=os.getenv("SEED_LOGO_BUCKET", "product-logos"),
        seed_batch_size=int(os.getenv("SEED_BATCH_SIZE", "50")),
        placeholder_path=Path(os.getenv("SEED_PLACEHOLDER_PATH") or DEFAULT_PLACEHOLDER_PATH),
        twitter_handle=os.getenv("SEED_TWITTER_HANDLE", ""),
        contact_email=os.getenv("SEED_CONTACT_EMAIL", "contact@example.com"),
    )
