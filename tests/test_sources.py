"""Tests for the ADS, OpenAlex and Semantic Scholar sources (mocked HTTP)."""

import asyncio
import os
from urllib.parse import unquote

import httpx
import pytest

from biblink.core.credentials import StaticCredentialProvider
from biblink.core.identifiers import IdentifierType
from biblink.core.settings import EnrichmentSettings, RateLimitConfig
from biblink.enrichment.errors import (
    AuthenticationRequiredError,
    NetworkError,
    NoIdentifierError,
    NotFoundError,
    ParseError,
    RateLimitedError,
)
from biblink.enrichment.models import EnrichmentCapability, EnrichmentData, OpenAccessStatus
from biblink.enrichment.plugin import parse_retry_after
from biblink.enrichment.rate_limiter import RateLimiter
from biblink.enrichment.sources import default_plugins
from biblink.enrichment.sources.ads import ADSSource
from biblink.enrichment.sources.openalex import OpenAlexSource, reconstruct_abstract
from biblink.enrichment.sources.semantic_scholar import SemanticScholarSource

DOI = {IdentifierType.DOI: "10.1/x"}

CREDENTIALS = StaticCredentialProvider(
    api_keys={"ads": "ads-token", "semanticscholar": "s2-key"},
    emails={"openalex": "me@example.org"},
)


# ── Fixtures ─────────────────────────────────────────────────────────


ADS_DOC = {
    "bibcode": "2023ApJ...950....1A",
    "citation_count": 42,
    "abstract": "ADS abstract",
    "reference": ["2020ApJ...900....1B", "2021MNRAS.500....2C"],
    "doi": ["10.1/x"],
    "identifier": ["2023ApJ...950....1A", "arXiv:2301.00001"],
    "pub": "The Astrophysical Journal",
}

OPENALEX_WORK = {
    "id": "https://openalex.org/W123",
    "doi": "https://doi.org/10.1/x",
    "cited_by_count": 7,
    "referenced_works": ["https://openalex.org/W1", "https://openalex.org/W2"],
    "abstract_inverted_index": {"Hello": [0], "world": [1]},
    "primary_location": {"source": {"display_name": "Nature"}, "pdf_url": "https://x/pdf"},
    "best_oa_location": {"pdf_url": "https://x/pdf"},
    "open_access": {"is_oa": True, "oa_status": "gold", "oa_url": "https://x/oa"},
    "ids": {"pmid": "https://pubmed.ncbi.nlm.nih.gov/999", "pmcid": "https://www.ncbi.nlm.nih.gov/pmc/articles/PMC42"},
}

S2_PAPER = {
    "paperId": "abc123",
    "externalIds": {"DOI": "10.1/x", "ArXiv": "2301.00001", "CorpusId": 1},
    "abstract": "S2 abstract",
    "venue": "",
    "citationCount": 3,
    "referenceCount": 2,
    "openAccessPdf": {"url": "https://x/s2.pdf"},
    "references": [
        {
            "paperId": "r1",
            "title": "A Reference",
            "authors": [{"name": "Ann Bee"}],
            "year": 2020,
            "externalIds": {"DOI": "10.2/r"},
            "openAccessPdf": None,
        },
        {"paperId": None, "title": "No ID"},
    ],
    "citations": [],
    "authors": [
        {
            "authorId": "1",
            "name": "Jane Doe",
            "hIndex": 10,
            "citationCount": 100,
            "paperCount": 20,
            "affiliations": ["MIT"],
        },
        {"authorId": None, "name": "Anonymous"},
    ],
}


def _json(payload, status=200, headers=None):
    def handler(request):
        return httpx.Response(status, json=payload, headers=headers)

    return handler


def _enrich(source_cls, handler, identifiers, existing=None, credentials=CREDENTIALS):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            plugin = source_cls(
                client=client, credentials=credentials, rate_limiter=RateLimiter(100, 1.0)
            )
            return await plugin.enrich(identifiers, existing)

    return asyncio.run(run())


# ── ADS ──────────────────────────────────────────────────────────────


def test_ads_success():
    result = _enrich(ADSSource, _json({"response": {"numFound": 1, "docs": [ADS_DOC]}}), DOI)
    data = result.data
    assert data.citation_count == 42
    assert data.reference_count == 2
    assert [r.id for r in data.references] == ADS_DOC["reference"]
    assert data.abstract == "ADS abstract"
    assert data.venue == "The Astrophysical Journal"
    assert data.source == "ads"
    assert data.fetched_at is not None
    assert result.resolved_identifiers[IdentifierType.BIBCODE] == "2023ApJ...950....1A"
    assert result.resolved_identifiers[IdentifierType.ARXIV] == "2301.00001"


def test_ads_request_shape():
    seen = {}

    def handler(request):
        seen["q"] = request.url.params["q"]
        seen["auth"] = request.headers["Authorization"]
        seen["fl"] = request.url.params["fl"]
        return httpx.Response(200, json={"response": {"numFound": 1, "docs": [ADS_DOC]}})

    _enrich(ADSSource, handler, {IdentifierType.BIBCODE: "2023ApJ...950....1A", **DOI})
    assert seen["q"] == 'bibcode:"2023ApJ...950....1A"'
    assert seen["auth"] == "Bearer ads-token"
    fields = seen["fl"].split(",")
    for field in ("bibcode", "citation_count", "abstract", "reference", "title", "doi", "pub"):
        assert field in fields


def test_ads_references_are_capped():
    bibcodes = [f"2020ApJ...{i:03d}....1B" for i in range(150)]
    doc = {**ADS_DOC, "reference": bibcodes}
    result = _enrich(ADSSource, _json({"response": {"numFound": 1, "docs": [doc]}}), DOI)
    assert result.data.reference_count == 150
    assert len(result.data.references) == 100
    assert [r.id for r in result.data.references] == bibcodes[:100]


def test_ads_arxiv_lookup_is_normalized():
    seen = {}

    def handler(request):
        seen["q"] = request.url.params["q"]
        return httpx.Response(200, json={"response": {"numFound": 1, "docs": [ADS_DOC]}})

    _enrich(ADSSource, handler, {IdentifierType.ARXIV: "arXiv:2301.00001v3"})
    assert seen["q"] == "arXiv:2301.00001"


def test_ads_requires_api_key():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(AuthenticationRequiredError):
        _enrich(ADSSource, handler, DOI, credentials=StaticCredentialProvider())
    assert calls == []


def test_ads_no_documents():
    with pytest.raises(NotFoundError):
        _enrich(ADSSource, _json({"response": {"numFound": 0, "docs": []}}), DOI)


def test_ads_cannot_enrich_pmid_only():
    plugin = ADSSource(credentials=CREDENTIALS)
    assert not plugin.can_enrich({IdentifierType.PMID: "123"})
    assert plugin.can_enrich(DOI)
    with pytest.raises(NoIdentifierError):
        _enrich(ADSSource, _json({}), {IdentifierType.PMID: "123"})


def test_existing_data_is_backfilled_not_preferred():
    existing = EnrichmentData(venue="Old Venue", pdf_urls=["https://old/pdf"])
    result = _enrich(
        ADSSource, _json({"response": {"numFound": 1, "docs": [ADS_DOC]}}), DOI, existing
    )
    assert result.data.venue == "The Astrophysical Journal"
    assert result.data.pdf_urls == ["https://old/pdf"]


# ── HTTP Error Mapping ───────────────────────────────────────────────


@pytest.mark.parametrize(
    "status, error",
    [
        (401, AuthenticationRequiredError),
        (403, AuthenticationRequiredError),
        (404, NotFoundError),
        (429, RateLimitedError),
        (500, NetworkError),
        (503, NetworkError),
    ],
)
def test_status_mapping(status, error):
    with pytest.raises(error):
        _enrich(OpenAlexSource, _json({}, status=status), DOI)


def test_rate_limited_carries_retry_after():
    with pytest.raises(RateLimitedError) as exc_info:
        _enrich(SemanticScholarSource, _json({}, status=429, headers={"Retry-After": "5"}), DOI)
    assert exc_info.value.retry_after == 5.0


def test_connection_error_is_network_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        _enrich(OpenAlexSource, handler, DOI)


def test_timeout_is_network_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(NetworkError, match="timed out"):
        _enrich(OpenAlexSource, handler, DOI)


def test_invalid_json_is_parse_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(ParseError):
        _enrich(OpenAlexSource, handler, DOI)


def test_unexpected_shape_is_parse_error():
    with pytest.raises(ParseError):
        _enrich(ADSSource, _json({"unexpected": True}), DOI)


def test_parse_retry_after():
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None


@pytest.mark.parametrize("value", ["inf", "-inf", "nan", "-3"])
def test_parse_retry_after_rejects_unusable_delays(value):
    assert parse_retry_after(value) is None


def test_rate_limited_ignores_infinite_retry_after():
    with pytest.raises(RateLimitedError) as exc_info:
        _enrich(SemanticScholarSource, _json({}, status=429, headers={"Retry-After": "inf"}), DOI)
    assert exc_info.value.retry_after is None


def test_invalid_url_is_parse_error():
    def handler(request):
        raise httpx.InvalidURL("bad")

    with pytest.raises(ParseError, match="request URL"):
        _enrich(OpenAlexSource, handler, DOI)


# ── OpenAlex ─────────────────────────────────────────────────────────


def test_openalex_success():
    result = _enrich(OpenAlexSource, _json(OPENALEX_WORK), DOI)
    data = result.data
    assert data.citation_count == 7
    assert data.reference_count == 2
    assert [r.id for r in data.references] == ["W1", "W2"]
    assert data.abstract == "Hello world"
    assert data.venue == "Nature"
    assert data.open_access_status is OpenAccessStatus.GOLD
    assert data.pdf_urls == ["https://x/oa", "https://x/pdf"]
    assert data.source == "openalex"

    ids = result.resolved_identifiers
    assert ids[IdentifierType.OPENALEX] == "W123"
    assert ids[IdentifierType.PMID] == "999"
    assert ids[IdentifierType.PMCID] == "PMC42"


def test_openalex_references_are_capped():
    work = {
        **OPENALEX_WORK,
        "referenced_works": [f"https://openalex.org/W{i}" for i in range(150)],
    }
    data = _enrich(OpenAlexSource, _json(work), DOI).data
    assert data.reference_count == 150
    assert len(data.references) == 100
    assert data.references[-1].id == "W99"


def test_openalex_request_uses_doi_url_and_mailto():
    seen = {}

    def handler(request):
        seen["path"] = unquote(request.url.path)
        seen["mailto"] = request.url.params.get("mailto")
        return httpx.Response(200, json=OPENALEX_WORK)

    _enrich(OpenAlexSource, handler, DOI)
    assert seen["path"] == "/works/https://doi.org/10.1/x"
    assert seen["mailto"] == "me@example.org"


def test_openalex_prefers_work_id():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        return httpx.Response(200, json=OPENALEX_WORK)

    _enrich(OpenAlexSource, handler, {IdentifierType.OPENALEX: "https://openalex.org/W123", **DOI})
    assert seen["path"] == "/works/W123"


def test_openalex_pmid_lookup():
    assert OpenAlexSource(credentials=CREDENTIALS)._lookup({IdentifierType.PMID: "999"}) == "pmid:999"


def test_openalex_closed_access():
    work = {**OPENALEX_WORK, "open_access": {"is_oa": False, "oa_url": None}}
    work["best_oa_location"] = None
    work["primary_location"] = {"source": None}
    data = _enrich(OpenAlexSource, _json(work), DOI).data
    assert data.open_access_status is OpenAccessStatus.CLOSED
    assert data.pdf_urls is None
    assert data.venue is None


def test_openalex_resolve_identifier():
    plugin = OpenAlexSource(credentials=CREDENTIALS)
    resolved = plugin.resolve_identifier(DOI)
    assert resolved[IdentifierType.OPENALEX] == "https://doi.org/10.1/x"
    assert plugin.resolve_identifier({IdentifierType.BIBCODE: "x"}) == {IdentifierType.BIBCODE: "x"}


def test_reconstruct_abstract_from_inverted_index():
    inv_index = {
        "This": [0],
        "is": [1],
        "a": [2, 5],
        "test": [3],
        "of": [4],
        "function": [6],
    }
    assert reconstruct_abstract(inv_index) == "This is a test of a function"


def test_reconstruct_abstract_none():
    assert reconstruct_abstract(None) is None


def test_reconstruct_abstract_empty():
    assert reconstruct_abstract({}) is None


# ── Semantic Scholar ─────────────────────────────────────────────────


def test_semantic_scholar_success():
    result = _enrich(SemanticScholarSource, _json(S2_PAPER), DOI)
    data = result.data
    assert data.citation_count == 3
    assert data.reference_count == 2
    assert data.abstract == "S2 abstract"
    assert data.pdf_urls == ["https://x/s2.pdf"]
    assert data.venue is None
    assert data.citations == []

    assert len(data.references) == 1
    ref = data.references[0]
    assert (ref.id, ref.doi, ref.authors, ref.year) == ("r1", "10.2/r", ["Ann Bee"], 2020)

    assert len(data.author_stats) == 1
    author = data.author_stats[0]
    assert (author.name, author.h_index, author.affiliations) == ("Jane Doe", 10, ["MIT"])

    ids = result.resolved_identifiers
    assert ids[IdentifierType.SEMANTIC_SCHOLAR] == "abc123"
    assert ids[IdentifierType.ARXIV] == "2301.00001"


def test_semantic_scholar_request_shape():
    seen = {}

    def handler(request):
        seen["path"] = unquote(request.url.path)
        seen["key"] = request.headers.get("x-api-key")
        seen["fields"] = request.url.params["fields"]
        return httpx.Response(200, json=S2_PAPER)

    _enrich(SemanticScholarSource, handler, {IdentifierType.ARXIV: "arXiv:2301.00001v2"})
    assert seen["path"] == "/graph/v1/paper/ARXIV:2301.00001"
    assert seen["key"] == "s2-key"
    assert "citations.externalIds" in seen["fields"].split(",")


def test_lookup_with_control_characters_is_encoded():
    seen = {}

    def handler(request):
        seen["raw"] = request.url.raw_path
        seen["path"] = unquote(request.url.path)
        return httpx.Response(200, json=S2_PAPER)

    result = _enrich(SemanticScholarSource, handler, {IdentifierType.DOI: "10.1000/ab\tc"})
    assert seen["path"] == "/graph/v1/paper/DOI:10.1000/ab\tc"
    assert b"\t" not in seen["raw"]
    assert result.data.citation_count == 3


def test_openalex_lookup_with_reserved_characters_is_encoded():
    seen = {}

    def handler(request):
        seen["path"] = unquote(request.url.path)
        seen["query"] = dict(request.url.params)
        return httpx.Response(200, json=OPENALEX_WORK)

    _enrich(OpenAlexSource, handler, {IdentifierType.DOI: "10.1000/a?b#c"})
    assert seen["path"] == "/works/https://doi.org/10.1000/a?b#c"
    assert set(seen["query"]) == {"mailto"}


def test_semantic_scholar_references_are_capped():
    refs = [{"paperId": f"r{i}", "title": f"Reference {i}"} for i in range(150)]
    paper = {**S2_PAPER, "references": refs, "referenceCount": 150}
    data = _enrich(SemanticScholarSource, _json(paper), DOI).data
    assert data.reference_count == 150
    assert len(data.references) == 100
    assert data.references[-1].id == "r99"


def test_semantic_scholar_key_is_optional():
    seen = {}

    def handler(request):
        seen["key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json=S2_PAPER)

    _enrich(SemanticScholarSource, handler, DOI, credentials=StaticCredentialProvider())
    assert seen["key"] is None


def test_semantic_scholar_resolve_identifier():
    plugin = SemanticScholarSource(credentials=CREDENTIALS)
    assert plugin.resolve_identifier(DOI)[IdentifierType.SEMANTIC_SCHOLAR] == "DOI:10.1/x"
    assert plugin.resolve_identifier({IdentifierType.BIBCODE: "x"}) == {IdentifierType.BIBCODE: "x"}


# ── Plugin Contract ──────────────────────────────────────────────────


def test_capabilities():
    s2 = SemanticScholarSource(credentials=CREDENTIALS)
    ads = ADSSource(credentials=CREDENTIALS)
    assert s2.supports(EnrichmentCapability.AUTHOR_STATS)
    assert not ads.supports(EnrichmentCapability.PDF_URL)
    assert ads.deduplication_priority > s2.deduplication_priority


def test_default_plugins_have_own_limiters():
    settings = EnrichmentSettings(
        request_timeout_seconds=5,
        rate_limits={"openalex": RateLimitConfig(requests_per_interval=2, interval_seconds=1)},
    )
    plugins = default_plugins(settings, credentials=CREDENTIALS)
    assert [p.source_id for p in plugins] == ["ads", "openalex", "semanticscholar"]
    assert len({id(p.rate_limiter) for p in plugins}) == 3
    by_id = {p.source_id: p for p in plugins}
    assert by_id["openalex"].rate_limiter.requests_per_interval == 2
    assert all(p.timeout == 5 for p in plugins)


def test_request_consumes_rate_limit_slot():
    limiter = RateLimiter(10, 60.0)

    async def run():
        transport = httpx.MockTransport(_json(OPENALEX_WORK))
        async with httpx.AsyncClient(transport=transport) as client:
            plugin = OpenAlexSource(client=client, credentials=CREDENTIALS, rate_limiter=limiter)
            await plugin.enrich(DOI)

    asyncio.run(run())
    assert limiter.available_slots == 9


# ── Live API ─────────────────────────────────────────────────────────

LIVE_DOI = {IdentifierType.DOI: "10.1038/nature14539"}


def _live(source_cls):
    async def run():
        plugin = source_cls(rate_limiter=RateLimiter(1, 1.0))
        return await plugin.enrich(LIVE_DOI)

    return asyncio.run(run())


@pytest.mark.network
def test_live_openalex():
    result = _live(OpenAlexSource)
    assert result.data.citation_count > 1000
    assert IdentifierType.OPENALEX in result.resolved_identifiers


@pytest.mark.network
def test_live_semantic_scholar():
    result = _live(SemanticScholarSource)
    assert result.data.citation_count > 1000
    assert result.data.abstract


@pytest.mark.network
@pytest.mark.skipif(not os.getenv("ADS_API_KEY"), reason="ADS_API_KEY not set")
def test_live_ads():
    result = _live(ADSSource)
    assert result.data.citation_count is not None
