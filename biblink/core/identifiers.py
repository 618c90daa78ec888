"""Publication identifiers: kinds, normalization, and extraction from field sets."""

import re
from enum import Enum
from typing import Optional
from urllib.parse import unquote, urlparse


# ── Identifier Kinds ─────────────────────────────────────────────────


class IdentifierType(str, Enum):
    """Kinds of publication identifiers across catalogs."""

    DOI = "doi"
    ARXIV = "arxiv"
    PMID = "pmid"
    PMCID = "pmcid"
    BIBCODE = "bibcode"
    SEMANTIC_SCHOLAR = "semanticScholar"
    OPENALEX = "openAlex"
    DBLP = "dblp"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    IdentifierType.DOI: "DOI",
    IdentifierType.ARXIV: "arXiv",
    IdentifierType.PMID: "PubMed",
    IdentifierType.PMCID: "PMC",
    IdentifierType.BIBCODE: "ADS Bibcode",
    IdentifierType.SEMANTIC_SCHOLAR: "Semantic Scholar",
    IdentifierType.OPENALEX: "OpenAlex",
    IdentifierType.DBLP: "DBLP",
}

Identifiers = dict[IdentifierType, str]


# ── Source IDs ───────────────────────────────────────────────────────


class SourceID(str, Enum):
    """Catalogs the library knows by name."""

    ARXIV = "arxiv"
    CROSSREF = "crossref"
    DBLP = "dblp"
    ADS = "ads"
    SEMANTIC_SCHOLAR = "semanticscholar"
    OPENALEX = "openalex"

    @property
    def display_name(self) -> str:
        return {
            SourceID.ARXIV: "arXiv",
            SourceID.CROSSREF: "Crossref",
            SourceID.DBLP: "DBLP",
            SourceID.ADS: "NASA ADS",
            SourceID.SEMANTIC_SCHOLAR: "Semantic Scholar",
            SourceID.OPENALEX: "OpenAlex",
        }[self]


def parse_source_id(text: str) -> Optional[SourceID]:
    """Case-insensitive lookup of a known source, or None."""
    try:
        return SourceID(text.strip().lower())
    except ValueError:
        return None


# ── Normalization ────────────────────────────────────────────────────


_ARXIV_PREFIX = "arxiv:"
_VERSION_RE = re.compile(r"v\d+$")


def normalize_arxiv_id(arxiv_id: str) -> str:
    """Strip the ``arXiv:`` prefix and version suffix, then lowercase.

    ``arXiv:2301.12345v2`` and ``2301.12345`` both become ``2301.12345``.
    """
    value = arxiv_id.strip()
    if value.lower().startswith(_ARXIV_PREFIX):
        value = value[len(_ARXIV_PREFIX):]
    value = _VERSION_RE.sub("", value)
    return value.lower()


def normalize_doi(doi: str) -> str:
    """DOIs compare case-insensitively; nothing else is rewritten."""
    return doi.strip().casefold()


def normalize_identifier(kind: IdentifierType, value: str) -> str:
    """Comparable form of an identifier value for its kind."""
    if kind is IdentifierType.ARXIV:
        return normalize_arxiv_id(value)
    if kind is IdentifierType.DOI:
        return normalize_doi(value)
    return value.strip()


def merge_identifiers(base: Identifiers, other: Identifiers) -> Identifiers:
    """Union of two identifier maps; ``base`` wins where both have a kind."""
    merged = dict(other)
    merged.update(base)
    return merged


# ── Extraction from Bibliographic Fields ─────────────────────────────

# First present field wins for each kind.
_FIELD_PRIORITY: dict[IdentifierType, tuple[str, ...]] = {
    IdentifierType.ARXIV: ("eprint", "arxivid", "arxiv"),
    IdentifierType.DOI: ("doi",),
    IdentifierType.BIBCODE: ("bibcode",),
    IdentifierType.PMID: ("pmid",),
    IdentifierType.PMCID: ("pmcid",),
}


def extract_identifiers(fields: dict[str, str]) -> Identifiers:
    """Pull every known identifier out of a BibTeX-style field dict.

    Field names are matched case-insensitively. A bibcode missing from the
    ``bibcode`` field is recovered from an ADS ``adsurl`` when possible.
    """
    lowered = {k.lower(): v for k, v in fields.items() if v and v.strip()}
    result: Identifiers = {}

    for kind, names in _FIELD_PRIORITY.items():
        for name in names:
            if name in lowered:
                result[kind] = lowered[name].strip()
                break

    if IdentifierType.BIBCODE not in result and "adsurl" in lowered:
        bibcode = bibcode_from_ads_url(lowered["adsurl"])
        if bibcode:
            result[IdentifierType.BIBCODE] = bibcode

    return result


def bibcode_from_ads_url(url: str) -> Optional[str]:
    """Extract the bibcode from an ADS abstract URL.

    Handles ``https://ui.adsabs.harvard.edu/abs/2023ApJ...123..456A/abstract``
    and the older ``https://adsabs.harvard.edu/abs/<bibcode>`` form. Returns
    None for URLs that are not on an ADS host.
    """
    parsed = urlparse(url.strip())
    if "adsabs" not in (parsed.hostname or ""):
        return None

    parts = [p for p in parsed.path.split("/") if p]
    if "abs" not in parts:
        return None
    idx = parts.index("abs")
    if idx + 1 >= len(parts):
        return None
    return unquote(parts[idx + 1])
