"""Semantic Scholar enrichment source."""

import logging
from typing import Optional
from urllib.parse import quote

from biblink.core.identifiers import IdentifierType, Identifiers, normalize_arxiv_id
from biblink.enrichment.errors import NoIdentifierError
from biblink.enrichment.models import (
    AuthorStats,
    EnrichmentCapability,
    EnrichmentData,
    PaperStub,
)
from biblink.enrichment.plugin import HTTPEnrichmentPlugin

logger = logging.getLogger(__name__)

S2_BASE = "https://api.semanticscholar.org/graph/v1"

_STUB_FIELDS = (
    "paperId", "title", "authors", "year", "venue",
    "externalIds", "citationCount", "openAccessPdf",
)
ENRICHMENT_FIELDS = ",".join(
    [
        "paperId", "externalIds", "title", "abstract", "year", "venue",
        "citationCount", "referenceCount", "openAccessPdf",
        *(f"references.{f}" for f in _STUB_FIELDS),
        *(f"citations.{f}" for f in _STUB_FIELDS),
        "authors.authorId", "authors.name", "authors.hIndex",
        "authors.citationCount", "authors.paperCount", "authors.affiliations",
    ]
)

_MAX_STUBS = 100

# S2 externalIds key -> identifier kind
_EXTERNAL_IDS = {
    "DOI": IdentifierType.DOI,
    "ArXiv": IdentifierType.ARXIV,
    "PubMed": IdentifierType.PMID,
    "PubMedCentral": IdentifierType.PMCID,
    "DBLP": IdentifierType.DBLP,
}


class SemanticScholarSource(HTTPEnrichmentPlugin):
    """Counts, reference and citation lists, abstracts, PDFs and author stats.

    An ``x-api-key`` is sent when one is configured; it is optional.
    """

    source_id = "semanticscholar"
    name = "Semantic Scholar"
    description = "AI-powered research tool from AI2"
    capabilities = frozenset(
        {
            EnrichmentCapability.CITATION_COUNT,
            EnrichmentCapability.REFERENCES,
            EnrichmentCapability.CITATIONS,
            EnrichmentCapability.ABSTRACT,
            EnrichmentCapability.PDF_URL,
            EnrichmentCapability.VENUE,
            EnrichmentCapability.AUTHOR_STATS,
        }
    )
    deduplication_priority = 50

    def resolve_identifier(self, identifiers: Identifiers) -> Identifiers:
        """S2 accepts prefixed external IDs (``DOI:…``) as paper IDs."""
        if IdentifierType.SEMANTIC_SCHOLAR in identifiers:
            return dict(identifiers)
        try:
            paper_id = self._lookup(identifiers)
        except NoIdentifierError:
            return dict(identifiers)
        return {**identifiers, IdentifierType.SEMANTIC_SCHOLAR: paper_id}

    def _lookup(self, identifiers: Identifiers) -> str:
        """Paper ID: S2 ID, then DOI, arXiv, PMID."""
        s2_id = identifiers.get(IdentifierType.SEMANTIC_SCHOLAR)
        if s2_id:
            return s2_id
        doi = identifiers.get(IdentifierType.DOI)
        if doi:
            return f"DOI:{doi}"
        arxiv = identifiers.get(IdentifierType.ARXIV)
        if arxiv:
            return f"ARXIV:{normalize_arxiv_id(arxiv)}"
        pmid = identifiers.get(IdentifierType.PMID)
        if pmid:
            return f"PMID:{pmid}"
        raise NoIdentifierError("Semantic Scholar needs an S2 ID, DOI, arXiv ID, or PMID")

    def _request(
        self, lookup: str, api_key: Optional[str], email: Optional[str]
    ) -> tuple[str, dict, dict]:
        headers = {"x-api-key": api_key} if api_key else {}
        path = quote(lookup, safe=":/")
        return f"{S2_BASE}/paper/{path}", {"fields": ENRICHMENT_FIELDS}, headers

    def _parse(self, payload: dict) -> EnrichmentData:
        pdf = payload.get("openAccessPdf") or {}
        pdf_urls = [pdf["url"]] if pdf.get("url") else None

        return EnrichmentData(
            citation_count=payload.get("citationCount"),
            reference_count=payload.get("referenceCount"),
            references=_parse_stubs(payload.get("references")),
            citations=_parse_stubs(payload.get("citations")),
            abstract=payload.get("abstract"),
            pdf_urls=pdf_urls,
            venue=payload.get("venue") or None,
            author_stats=_parse_authors(payload.get("authors")),
        )

    def _discovered_identifiers(self, payload: dict) -> Identifiers:
        found: Identifiers = {}
        paper_id = payload.get("paperId")
        if paper_id:
            found[IdentifierType.SEMANTIC_SCHOLAR] = paper_id
        ext = payload.get("externalIds") or {}
        for key, kind in _EXTERNAL_IDS.items():
            value = ext.get(key)
            if value:
                found[kind] = str(value)
        return found


# ── Parsing ──────────────────────────────────────────────────────────


def _parse_stubs(items: list | None) -> list[PaperStub] | None:
    if items is None:
        return None
    stubs = []
    for paper in items[:_MAX_STUBS]:
        stub = _parse_stub(paper)
        if stub:
            stubs.append(stub)
    return stubs


def _parse_stub(paper: dict) -> PaperStub | None:
    """A reference/citation entry; entries without ID or title are dropped."""
    paper_id = paper.get("paperId")
    title = paper.get("title")
    if not paper_id or not title:
        return None

    ext = paper.get("externalIds") or {}
    pdf = paper.get("openAccessPdf")
    is_open_access = bool(pdf.get("url")) if isinstance(pdf, dict) else None

    return PaperStub(
        id=paper_id,
        title=title,
        authors=[a["name"] for a in paper.get("authors") or [] if a.get("name")],
        year=paper.get("year"),
        venue=paper.get("venue") or None,
        doi=ext.get("DOI"),
        arxiv_id=ext.get("ArXiv"),
        citation_count=paper.get("citationCount"),
        is_open_access=is_open_access,
    )


def _parse_authors(authors: list | None) -> list[AuthorStats] | None:
    if authors is None:
        return None
    stats = []
    for author in authors:
        author_id = author.get("authorId")
        name = author.get("name")
        if not author_id or not name:
            continue

        affiliations = None
        raw = author.get("affiliations") or []
        # S2 has returned affiliations both as strings and as {"name": ...}
        names = [a.get("name") if isinstance(a, dict) else a for a in raw]
        names = [n for n in names if n]
        if names:
            affiliations = names

        stats.append(
            AuthorStats(
                author_id=author_id,
                name=name,
                h_index=author.get("hIndex"),
                citation_count=author.get("citationCount"),
                paper_count=author.get("paperCount"),
                affiliations=affiliations,
            )
        )
    return stats
