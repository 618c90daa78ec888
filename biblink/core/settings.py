"""Settings: YAML loader, Pydantic models, and the settings store."""

import hashlib
import json
import logging
from pathlib import Path
from typing import Callable, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


# ── Rate Limits ──────────────────────────────────────────────────────


class RateLimitConfig(BaseModel):
    """Request budget for one source: N requests per interval."""

    requests_per_interval: int = Field(ge=1)
    interval_seconds: float = Field(gt=0)


DEFAULT_RATE_LIMITS: dict[str, RateLimitConfig] = {
    "ads": RateLimitConfig(requests_per_interval=5000, interval_seconds=86400),
    "openalex": RateLimitConfig(requests_per_interval=10, interval_seconds=1),
    "semanticscholar": RateLimitConfig(requests_per_interval=100, interval_seconds=1),
}


# ── Retry Policy ─────────────────────────────────────────────────────


class RetryPolicy(BaseModel):
    """Backoff for enrich_with_retry; plain enrich_now never retries."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0, description="seconds")
    max_delay: float = Field(default=30.0, ge=0, description="seconds")
    jitter: float = Field(default=0.5, ge=0, description="max random seconds added")


# ── Deduplication ────────────────────────────────────────────────────


DEFAULT_DEDUP_PRIORITIES: dict[str, int] = {
    "crossref": 100,
    "ads": 90,
    "dblp": 80,
    "pubmed": 75,
    "arxiv": 70,
    "openalex": 55,
    "semanticscholar": 50,
}


class DedupConfig(BaseModel):
    """Thresholds and source ranking for cross-catalog deduplication."""

    title_similarity_threshold: float = Field(
        default=1.0, gt=0.0, le=1.0, description="1.0 = normalized titles must be equal"
    )
    year_tolerance: int = Field(default=1, ge=0)
    priorities: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_DEDUP_PRIORITIES),
        description="source id -> rank; higher wins primary",
    )

    def priority_of(self, source_id: str) -> int:
        return self.priorities.get(source_id, 0)


# ── Enrichment ───────────────────────────────────────────────────────


class EnrichmentSettings(BaseModel):
    """Source ordering, cadence and per-call limits for enrichment."""

    preferred_source: str = "ads"
    source_priority: list[str] = Field(
        default_factory=lambda: ["ads", "openalex", "semanticscholar"]
    )
    disabled_sources: list[str] = Field(default_factory=list)
    auto_sync_enabled: bool = True
    refresh_interval_days: int = Field(default=7, ge=1)
    request_timeout_seconds: float = Field(default=15.0, gt=0)
    rate_limits: dict[str, RateLimitConfig] = Field(
        default_factory=lambda: dict(DEFAULT_RATE_LIMITS)
    )
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @field_validator("source_priority")
    @classmethod
    def no_duplicate_sources(cls, v: list[str]) -> list[str]:
        if len(set(v)) != len(v):
            raise ValueError(f"Duplicate source in priority list: {v}")
        return v

    def is_enabled(self, source_id: str) -> bool:
        return source_id not in self.disabled_sources

    def rank_of(self, source_id: str) -> Optional[int]:
        """0 = highest priority; None when the source is not listed."""
        try:
            return self.source_priority.index(source_id)
        except ValueError:
            return None

    def rate_limit_for(self, source_id: str) -> Optional[RateLimitConfig]:
        return self.rate_limits.get(source_id)


# ── Settings (top-level) ─────────────────────────────────────────────


class Settings(BaseModel):
    """Top-level settings object injected by the host application."""

    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    deduplication: DedupConfig = Field(default_factory=DedupConfig)

    def settings_hash(self) -> str:
        """SHA-256 of the whole settings object (canonical JSON)."""
        return _canonical_hash(self.model_dump(mode="json"))


def _canonical_hash(data: dict) -> str:
    """Deterministic SHA-256 hash of a dict via sorted-key JSON."""
    blob = json.dumps(data, sort_keys=True, default=str).encode()
    return hashlib.sha256(blob).hexdigest()


def load_settings(path: str | Path) -> Settings:
    """Load YAML settings from disk and return a validated model.

    Missing sections fall back to defaults; an empty file yields defaults.
    """
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return Settings.model_validate(raw)


# ── Settings Store ───────────────────────────────────────────────────


class EnrichmentSettingsStore:
    """In-memory enrichment settings with update operations.

    The store never touches disk. Hosts that persist settings pass an
    ``on_change`` callback, which receives every new settings value.
    """

    def __init__(
        self,
        settings: EnrichmentSettings | None = None,
        on_change: Callable[[EnrichmentSettings], None] | None = None,
    ):
        self._settings = settings or EnrichmentSettings()
        self._on_change = on_change

    @property
    def settings(self) -> EnrichmentSettings:
        return self._settings

    # ── Updates ──────────────────────────────────────────────────

    def update_settings(self, new_settings: EnrichmentSettings) -> None:
        self._replace(new_settings)
        logger.info("Enrichment settings replaced")

    def update_preferred_source(self, source_id: str) -> None:
        self._update(preferred_source=source_id)
        logger.debug("Preferred source -> %s", source_id)

    def update_source_priority(self, priority: list[str]) -> None:
        self._replace(
            EnrichmentSettings.model_validate(
                {**self._settings.model_dump(), "source_priority": list(priority)}
            )
        )
        logger.debug("Source priority -> %s", priority)

    def update_auto_sync_enabled(self, enabled: bool) -> None:
        self._update(auto_sync_enabled=enabled)
        logger.debug("Auto-sync -> %s", enabled)

    def update_refresh_interval_days(self, days: int) -> None:
        """Minimum of one day."""
        self._update(refresh_interval_days=max(1, days))
        logger.debug("Refresh interval -> %d days", max(1, days))

    def move_source(self, source_id: str, index: int) -> None:
        """Move a listed source to a new position (clamped). Unknown ids are ignored."""
        priority = list(self._settings.source_priority)
        if source_id not in priority:
            return
        priority.remove(source_id)
        new_index = max(0, min(index, len(priority)))
        priority.insert(new_index, source_id)
        self._update(source_priority=priority)
        logger.debug("Moved %s to index %d", source_id, new_index)

    def enable_source(self, source_id: str) -> None:
        disabled = [s for s in self._settings.disabled_sources if s != source_id]
        self._update(disabled_sources=disabled)

    def disable_source(self, source_id: str) -> None:
        if source_id in self._settings.disabled_sources:
            return
        self._update(disabled_sources=[*self._settings.disabled_sources, source_id])

    def reset_to_defaults(self) -> None:
        self._replace(EnrichmentSettings())
        logger.info("Enrichment settings reset to defaults")

    # ── Queries ──────────────────────────────────────────────────

    def is_source_enabled(self, source_id: str) -> bool:
        """Listed in the priority order and not disabled."""
        return (
            source_id in self._settings.source_priority
            and self._settings.is_enabled(source_id)
        )

    def priority_rank(self, source_id: str) -> Optional[int]:
        return self._settings.rank_of(source_id)

    @property
    def top_priority_source(self) -> Optional[str]:
        for source_id in self._settings.source_priority:
            if self._settings.is_enabled(source_id):
                return source_id
        return None

    # ── Helpers ──────────────────────────────────────────────────

    def _update(self, **changes) -> None:
        self._replace(self._settings.model_copy(update=changes))

    def _replace(self, new_settings: EnrichmentSettings) -> None:
        self._settings = new_settings
        if self._on_change is not None:
            self._on_change(new_settings)
