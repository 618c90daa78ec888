"""Enrichment data models: fact sheets, capabilities, and results."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from biblink.core.identifiers import Identifiers
from biblink.enrichment.errors import EnrichmentError


# ── Capabilities ─────────────────────────────────────────────────────


class EnrichmentCapability(str, Enum):
    """Kinds of facts a source can supply."""

    CITATION_COUNT = "citationCount"
    REFERENCES = "references"
    CITATIONS = "citations"
    ABSTRACT = "abstract"
    PDF_URL = "pdfURL"
    OPEN_ACCESS = "openAccess"
    VENUE = "venue"
    AUTHOR_STATS = "authorStats"


ALL_CAPABILITIES: frozenset[EnrichmentCapability] = frozenset(EnrichmentCapability)


class OpenAccessStatus(str, Enum):
    GOLD = "gold"
    GREEN = "green"
    BRONZE = "bronze"
    HYBRID = "hybrid"
    CLOSED = "closed"
    UNKNOWN = "unknown"


# ── Stubs ────────────────────────────────────────────────────────────


class PaperStub(BaseModel):
    """Lightweight reference to a cited or citing paper."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    authors: list[str] = Field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    doi: Optional[str] = None
    arxiv_id: Optional[str] = None
    citation_count: Optional[int] = None
    is_open_access: Optional[bool] = None


class AuthorStats(BaseModel):
    """Per-author metrics reported by a source."""

    model_config = ConfigDict(frozen=True)

    author_id: str
    name: str
    h_index: Optional[int] = None
    citation_count: Optional[int] = None
    paper_count: Optional[int] = None
    affiliations: Optional[list[str]] = None


# ── Enrichment Data ──────────────────────────────────────────────────


class EnrichmentData(BaseModel):
    """Partial, mergeable fact sheet about one paper.

    None always means "this source did not say"; an empty list is a real
    answer (e.g. a paper with no citations yet).
    """

    model_config = ConfigDict(frozen=True)

    citation_count: Optional[int] = None
    reference_count: Optional[int] = None
    references: Optional[list[PaperStub]] = None
    citations: Optional[list[PaperStub]] = None
    abstract: Optional[str] = None
    pdf_urls: Optional[list[str]] = None
    open_access_status: Optional[OpenAccessStatus] = None
    venue: Optional[str] = None
    author_stats: Optional[list[AuthorStats]] = None
    source: Optional[str] = None
    fetched_at: Optional[datetime] = None

    def merging(self, other: Optional["EnrichmentData"]) -> "EnrichmentData":
        """``merge(self, other)``: keep our fields, fill gaps from ``other``."""
        return merge(self, other)

    def is_stale(self, refresh_interval_days: int, now: datetime | None = None) -> bool:
        """True when never fetched or fetched longer ago than the interval."""
        if self.fetched_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        fetched = self.fetched_at
        if fetched.tzinfo is None:
            fetched = fetched.replace(tzinfo=timezone.utc)
        return now - fetched > timedelta(days=refresh_interval_days)


def merge(a: Optional[EnrichmentData], b: Optional[EnrichmentData]) -> Optional[EnrichmentData]:
    """Field-wise fill: ``a``'s value where present, otherwise ``b``'s.

    Pass the newest fetch as ``a`` so fresh values are never replaced by
    stale ones while gaps are still backfilled.
    """
    if a is None:
        return b
    if b is None:
        return a
    values = {}
    for name in EnrichmentData.model_fields:
        mine = getattr(a, name)
        values[name] = mine if mine is not None else getattr(b, name)
    return EnrichmentData(**values)


# ── Enrichment Result ────────────────────────────────────────────────


class EnrichmentResult(BaseModel):
    """Data from one enrichment call plus any identifiers it discovered.

    ``failures`` lists sources that failed during an orchestrated call.
    It is informational; a result with failures is still a success.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: EnrichmentData
    resolved_identifiers: Identifiers = Field(default_factory=dict)
    failures: dict[str, EnrichmentError] = Field(default_factory=dict)
