"""Search result models shared by every catalog."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from biblink.core.identifiers import IdentifierType, Identifiers

_PRIMARY_ID_ORDER = (
    IdentifierType.DOI,
    IdentifierType.ARXIV,
    IdentifierType.PMID,
    IdentifierType.BIBCODE,
    IdentifierType.SEMANTIC_SCHOLAR,
    IdentifierType.OPENALEX,
)


class SearchResult(BaseModel):
    """One catalog's report of one paper.

    Equality is by ``(id, source_id)``: the same paper from two catalogs is
    two different results until deduplication groups them.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    source_id: str
    title: str
    authors: list[str] = Field(default_factory=list)
    year: Optional[int] = None
    venue: Optional[str] = None
    abstract: Optional[str] = None
    identifiers: Identifiers = Field(default_factory=dict)
    pdf_url: Optional[str] = None
    web_url: Optional[str] = None
    bibtex_url: Optional[str] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SearchResult):
            return NotImplemented
        return (self.id, self.source_id) == (other.id, other.source_id)

    def __hash__(self) -> int:
        return hash((self.id, self.source_id))

    @property
    def key(self) -> tuple[str, str]:
        return (self.id, self.source_id)

    @property
    def primary_identifier(self) -> Optional[str]:
        """DOI preferred, then arXiv, PubMed, bibcode and catalog ids."""
        for kind in _PRIMARY_ID_ORDER:
            if kind in self.identifiers:
                return self.identifiers[kind]
        return None

    @property
    def first_author_surname(self) -> Optional[str]:
        """Surname of the first author, for "Last, First" or "First Last"."""
        if not self.authors:
            return None
        first = self.authors[0].strip()
        if "," in first:
            surname = first.split(",", 1)[0].strip()
        else:
            parts = first.split()
            surname = parts[-1] if parts else ""
        return surname or None


class DeduplicatedResult(BaseModel):
    """Results from several catalogs believed to describe the same work."""

    model_config = ConfigDict(frozen=True)

    primary: SearchResult
    alternates: list[SearchResult] = Field(default_factory=list)
    identifiers: Identifiers = Field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.primary.id

    @property
    def members(self) -> list[SearchResult]:
        return [self.primary, *self.alternates]

    @property
    def source_ids(self) -> list[str]:
        return [r.source_id for r in self.members]

    @property
    def best_pdf_url(self) -> Optional[str]:
        return next((r.pdf_url for r in self.members if r.pdf_url), None)

    @property
    def best_bibtex_url(self) -> Optional[str]:
        return next((r.bibtex_url for r in self.members if r.bibtex_url), None)
