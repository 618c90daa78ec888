"""Built-in enrichment sources."""

import httpx

from biblink.core.credentials import CredentialProvider, EnvCredentialProvider
from biblink.core.settings import EnrichmentSettings
from biblink.enrichment.plugin import HTTPEnrichmentPlugin
from biblink.enrichment.rate_limiter import RateLimiter
from biblink.enrichment.sources.ads import ADSSource
from biblink.enrichment.sources.openalex import OpenAlexSource
from biblink.enrichment.sources.semantic_scholar import SemanticScholarSource

SOURCES: list[type[HTTPEnrichmentPlugin]] = [
    ADSSource,
    OpenAlexSource,
    SemanticScholarSource,
]


def default_plugins(
    settings: EnrichmentSettings | None = None,
    credentials: CredentialProvider | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[HTTPEnrichmentPlugin]:
    """One instance of every built-in source, each with its own rate limiter."""
    settings = settings or EnrichmentSettings()
    credentials = credentials or EnvCredentialProvider()
    plugins = []
    for cls in SOURCES:
        limiter = None
        config = settings.rate_limit_for(cls.source_id)
        if config is not None:
            limiter = RateLimiter.from_config(config, name=cls.source_id)
        plugins.append(
            cls(
                client=client,
                credentials=credentials,
                rate_limiter=limiter,
                timeout=settings.request_timeout_seconds,
            )
        )
    return plugins
