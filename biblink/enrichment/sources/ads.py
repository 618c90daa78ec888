"""NASA ADS enrichment source."""

import logging
from typing import Optional

from biblink.core.identifiers import IdentifierType, Identifiers, normalize_arxiv_id
from biblink.enrichment.errors import NoIdentifierError, NotFoundError
from biblink.enrichment.models import EnrichmentCapability, EnrichmentData, PaperStub
from biblink.enrichment.plugin import HTTPEnrichmentPlugin

logger = logging.getLogger(__name__)

BASE_URL = "https://api.adsabs.harvard.edu/v1"
FIELDS = "bibcode,citation_count,abstract,reference,title,doi,identifier,pub"

_MAX_REFERENCES = 100
_UNRESOLVED_TITLE = "Referenced Work"


class ADSSource(HTTPEnrichmentPlugin):
    """Citation counts, references, abstracts and venues from ADS.

    ADS requires an API token; without one every call fails with
    AuthenticationRequiredError.
    """

    source_id = "ads"
    name = "NASA ADS"
    description = "NASA Astrophysics Data System"
    capabilities = frozenset(
        {
            EnrichmentCapability.CITATION_COUNT,
            EnrichmentCapability.REFERENCES,
            EnrichmentCapability.ABSTRACT,
            EnrichmentCapability.VENUE,
        }
    )
    deduplication_priority = 90
    requires_api_key = True

    def resolve_identifier(self, identifiers: Identifiers) -> Identifiers:
        # A bibcode needs a search to resolve, so nothing is added here
        return dict(identifiers)

    def _lookup(self, identifiers: Identifiers) -> str:
        """ADS query string: bibcode, then DOI, then arXiv ID."""
        bibcode = identifiers.get(IdentifierType.BIBCODE)
        if bibcode:
            return f'bibcode:"{bibcode}"'
        doi = identifiers.get(IdentifierType.DOI)
        if doi:
            return f'doi:"{doi}"'
        arxiv = identifiers.get(IdentifierType.ARXIV)
        if arxiv:
            return f"arXiv:{normalize_arxiv_id(arxiv)}"
        raise NoIdentifierError("ADS needs a bibcode, DOI, or arXiv ID")

    def _request(
        self, lookup: str, api_key: Optional[str], email: Optional[str]
    ) -> tuple[str, dict, dict]:
        params = {"q": lookup, "fl": FIELDS, "rows": 1}
        headers = {"Authorization": f"Bearer {api_key}"}
        return f"{BASE_URL}/search/query", params, headers

    def _parse(self, payload: dict) -> EnrichmentData:
        doc = _first_doc(payload)

        references = None
        reference_count = None
        ref_bibcodes = doc.get("reference")
        if isinstance(ref_bibcodes, list):
            reference_count = len(ref_bibcodes)
            references = [
                PaperStub(id=bibcode, title=_UNRESOLVED_TITLE)
                for bibcode in ref_bibcodes[:_MAX_REFERENCES]
            ]

        return EnrichmentData(
            citation_count=doc.get("citation_count"),
            reference_count=reference_count,
            references=references,
            abstract=doc.get("abstract"),
            venue=doc.get("pub"),
        )

    def _discovered_identifiers(self, payload: dict) -> Identifiers:
        doc = _first_doc(payload)
        found: Identifiers = {}
        bibcode = doc.get("bibcode")
        if bibcode:
            found[IdentifierType.BIBCODE] = bibcode

        dois = doc.get("doi") or []
        if dois:
            found[IdentifierType.DOI] = dois[0]

        for ident in doc.get("identifier") or []:
            if ident.lower().startswith("arxiv:"):
                found[IdentifierType.ARXIV] = ident[len("arXiv:"):]
                break
        return found


def _first_doc(payload: dict) -> dict:
    """The single matching document, or NotFoundError."""
    response = payload["response"]
    docs = response["docs"]
    if not isinstance(docs, list):
        raise TypeError("docs is not a list")
    if response.get("numFound", len(docs)) == 0 or not docs:
        raise NotFoundError("ADS returned no documents")
    return docs[0]
