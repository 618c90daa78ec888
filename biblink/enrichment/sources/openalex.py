"""OpenAlex enrichment source."""

import logging
from typing import Optional
from urllib.parse import quote

from pyalex import invert_abstract

from biblink.core.identifiers import IdentifierType, Identifiers
from biblink.enrichment.errors import NoIdentifierError
from biblink.enrichment.models import (
    EnrichmentCapability,
    EnrichmentData,
    OpenAccessStatus,
    PaperStub,
)
from biblink.enrichment.plugin import HTTPEnrichmentPlugin

logger = logging.getLogger(__name__)

BASE_URL = "https://api.openalex.org"

_OPENALEX_PREFIX = "https://openalex.org/"
_DOI_PREFIX = "https://doi.org/"
_PUBMED_PREFIX = "https://pubmed.ncbi.nlm.nih.gov/"
_MAX_REFERENCES = 100
_UNRESOLVED_TITLE = "Referenced Work"


class OpenAlexSource(HTTPEnrichmentPlugin):
    """Counts, references, abstracts, venues and open-access data from OpenAlex.

    No key is needed; an email registered for ``openalex`` is sent as
    ``mailto`` to use the polite pool.
    """

    source_id = "openalex"
    name = "OpenAlex"
    description = "Open catalog of scholarly works"
    capabilities = frozenset(
        {
            EnrichmentCapability.CITATION_COUNT,
            EnrichmentCapability.REFERENCES,
            EnrichmentCapability.ABSTRACT,
            EnrichmentCapability.PDF_URL,
            EnrichmentCapability.OPEN_ACCESS,
            EnrichmentCapability.VENUE,
        }
    )
    deduplication_priority = 55

    def resolve_identifier(self, identifiers: Identifiers) -> Identifiers:
        """OpenAlex accepts a DOI URL wherever it accepts a work ID."""
        if IdentifierType.OPENALEX in identifiers:
            return dict(identifiers)
        doi = identifiers.get(IdentifierType.DOI)
        if doi:
            return {**identifiers, IdentifierType.OPENALEX: f"{_DOI_PREFIX}{doi}"}
        return dict(identifiers)

    def _lookup(self, identifiers: Identifiers) -> str:
        """Work key: OpenAlex ID, then DOI URL, then ``pmid:``."""
        oa_id = (identifiers.get(IdentifierType.OPENALEX) or "").strip()
        if oa_id.startswith(_OPENALEX_PREFIX):
            oa_id = oa_id[len(_OPENALEX_PREFIX):]
        if oa_id[:1] in ("W", "w") or oa_id.startswith("https://"):
            return oa_id

        doi = identifiers.get(IdentifierType.DOI)
        if doi:
            return f"{_DOI_PREFIX}{doi}"

        pmid = identifiers.get(IdentifierType.PMID)
        if pmid:
            return f"pmid:{pmid}"

        raise NoIdentifierError("OpenAlex needs an OpenAlex ID, DOI, or PMID")

    def _request(
        self, lookup: str, api_key: Optional[str], email: Optional[str]
    ) -> tuple[str, dict, dict]:
        params = {}
        if email:
            params["mailto"] = email
        if api_key:
            params["api_key"] = api_key
        return f"{BASE_URL}/works/{quote(lookup, safe=':/')}", params, {}

    def _parse(self, payload: dict) -> EnrichmentData:
        return _parse_work(payload)

    def _discovered_identifiers(self, payload: dict) -> Identifiers:
        found: Identifiers = {}

        work_id = payload.get("id")
        if work_id:
            found[IdentifierType.OPENALEX] = work_id.replace(_OPENALEX_PREFIX, "")

        doi = payload.get("doi")
        if doi:
            found[IdentifierType.DOI] = _strip_prefix(doi, _DOI_PREFIX)

        ids = payload.get("ids") or {}
        pmid_url = ids.get("pmid")
        if pmid_url:
            found[IdentifierType.PMID] = _strip_prefix(pmid_url, _PUBMED_PREFIX).strip("/")
        pmcid_url = ids.get("pmcid")
        if pmcid_url:
            found[IdentifierType.PMCID] = pmcid_url.rstrip("/").rsplit("/", 1)[-1]
        return found


# ── Abstract Reconstruction ──────────────────────────────────────────


def reconstruct_abstract(inverted_index: dict | None) -> str | None:
    """Reassemble full abstract text from an OpenAlex inverted index.

    OpenAlex stores abstracts as {word: [position, ...]} dicts.
    Returns None if the inverted index is empty or None.
    """
    if not inverted_index:
        return None
    return invert_abstract(inverted_index)


# ── Work → EnrichmentData ────────────────────────────────────────────


def _parse_work(work: dict) -> EnrichmentData:
    """Convert an OpenAlex Work dict into enrichment data."""
    referenced = work.get("referenced_works")
    references = None
    reference_count = None
    if isinstance(referenced, list):
        reference_count = len(referenced)
        references = [
            PaperStub(id=_strip_prefix(w, _OPENALEX_PREFIX), title=_UNRESOLVED_TITLE)
            for w in referenced[:_MAX_REFERENCES]
        ]

    # Venue
    primary = work.get("primary_location") or {}
    source = primary.get("source") or {}
    venue = source.get("display_name")

    # Open access
    status, pdf_urls = _parse_open_access(work)

    return EnrichmentData(
        citation_count=work.get("cited_by_count"),
        reference_count=reference_count,
        references=references,
        abstract=reconstruct_abstract(work.get("abstract_inverted_index")),
        pdf_urls=pdf_urls,
        open_access_status=status,
        venue=venue,
    )


def _parse_open_access(work: dict) -> tuple[OpenAccessStatus | None, list[str] | None]:
    open_access = work.get("open_access")
    if not isinstance(open_access, dict):
        return None, None

    if open_access.get("is_oa"):
        try:
            status = OpenAccessStatus(open_access.get("oa_status"))
        except ValueError:
            status = OpenAccessStatus.UNKNOWN
        if status is OpenAccessStatus.CLOSED:
            status = OpenAccessStatus.UNKNOWN
    else:
        status = OpenAccessStatus.CLOSED

    urls: list[str] = []
    candidates = [
        open_access.get("oa_url"),
        (work.get("best_oa_location") or {}).get("pdf_url"),
        (work.get("primary_location") or {}).get("pdf_url"),
    ]
    for url in candidates:
        if url and url not in urls:
            urls.append(url)
    return status, (urls or None)


def _strip_prefix(value: str, prefix: str) -> str:
    return value[len(prefix):] if value.startswith(prefix) else value
