"""Enrichment plugin contract and the shared HTTP implementation."""

import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import httpx

from biblink.core.credentials import CredentialProvider, EnvCredentialProvider
from biblink.core.identifiers import Identifiers, merge_identifiers
from biblink.core.settings import DEFAULT_RATE_LIMITS, RateLimitConfig
from biblink.enrichment.errors import (
    AuthenticationRequiredError,
    NetworkError,
    NoIdentifierError,
    NotFoundError,
    ParseError,
    RateLimitedError,
)
from biblink.enrichment.models import (
    EnrichmentCapability,
    EnrichmentData,
    EnrichmentResult,
    merge,
)
from biblink.enrichment.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


# ── Contract ─────────────────────────────────────────────────────────


class EnrichmentPlugin(ABC):
    """One external catalog that can enrich a paper.

    Subclasses declare ``source_id``, ``name`` and ``capabilities`` as class
    attributes so they can be inspected without any I/O.
    """

    source_id: str = ""
    name: str = ""
    description: str = ""
    capabilities: frozenset[EnrichmentCapability] = frozenset()
    deduplication_priority: int = 0

    def supports(self, capability: EnrichmentCapability) -> bool:
        return capability in self.capabilities

    def can_enrich(self, identifiers: Identifiers) -> bool:
        """Whether the known identifiers are enough for this source."""
        return bool(identifiers)

    def resolve_identifier(self, identifiers: Identifiers) -> Identifiers:
        """Derive this source's lookup identifier without fetching anything.

        The default passes identifiers through unchanged.
        """
        return dict(identifiers)

    @abstractmethod
    async def enrich(
        self,
        identifiers: Identifiers,
        existing_data: Optional[EnrichmentData] = None,
    ) -> EnrichmentResult:
        """Fetch enrichment data for one paper.

        With ``existing_data`` the returned data is ``merge(new, existing)``.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source_id}>"


# ── HTTP Plugins ─────────────────────────────────────────────────────


class HTTPEnrichmentPlugin(EnrichmentPlugin):
    """JSON-over-HTTP source: credentials, pacing, status mapping, merging.

    Subclasses build the lookup and request, and parse the response.
    """

    requires_api_key: bool = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        credentials: CredentialProvider | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._client = client
        self.credentials = credentials or EnvCredentialProvider()
        self.rate_limiter = rate_limiter or RateLimiter.from_config(
            DEFAULT_RATE_LIMITS.get(self.source_id)
            or RateLimitConfig(requests_per_interval=1, interval_seconds=1),
            name=self.source_id,
        )
        self.timeout = timeout

    # ── Subclass hooks ───────────────────────────────────────────

    @abstractmethod
    def _lookup(self, identifiers: Identifiers) -> str:
        """The key this source is queried by; raises NoIdentifierError."""

    @abstractmethod
    def _request(
        self, lookup: str, api_key: Optional[str], email: Optional[str]
    ) -> tuple[str, dict, dict]:
        """Return ``(url, params, headers)`` for the lookup."""

    @abstractmethod
    def _parse(self, payload: dict) -> EnrichmentData:
        """Turn a decoded response into enrichment data."""

    def _discovered_identifiers(self, payload: dict) -> Identifiers:
        """Identifiers found in the response, such as the source's own id."""
        return {}

    # ── Contract ─────────────────────────────────────────────────

    def can_enrich(self, identifiers: Identifiers) -> bool:
        try:
            self._lookup(identifiers)
        except NoIdentifierError:
            return False
        return True

    async def enrich(
        self,
        identifiers: Identifiers,
        existing_data: Optional[EnrichmentData] = None,
    ) -> EnrichmentResult:
        logger.info("%s: enriching paper with identifiers: %s", self.name, describe(identifiers))

        lookup = self._lookup(identifiers)

        api_key = self.credentials.api_key(self.source_id)
        if self.requires_api_key and not api_key:
            raise AuthenticationRequiredError(self.source_id)
        email = self.credentials.email(self.source_id)

        url, params, headers = self._request(lookup, api_key, email)

        await self.rate_limiter.wait_if_needed()
        payload = await self._get_json(url, params, headers)

        try:
            data = self._parse(payload)
            discovered = self._discovered_identifiers(payload)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise ParseError(f"Unexpected {self.name} response: {exc}") from exc

        data = data.model_copy(
            update={"source": self.source_id, "fetched_at": datetime.now(timezone.utc)}
        )
        logger.info("%s: enrichment complete - citations: %s", self.name, data.citation_count)

        if existing_data is not None:
            data = merge(data, existing_data)

        return EnrichmentResult(
            data=data,
            resolved_identifiers=merge_identifiers(identifiers, discovered),
        )

    # ── HTTP ─────────────────────────────────────────────────────

    async def _get_json(self, url: str, params: dict, headers: dict) -> dict:
        logger.debug("GET %s", url)
        try:
            if self._client is not None:
                response = await self._client.get(
                    url, params=params, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{self.name} timed out") from exc
        except httpx.InvalidURL as exc:
            raise ParseError(f"Cannot build {self.name} request URL: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"{self.name}: {exc.__class__.__name__}: {exc}") from exc

        logger.debug("HTTP %d %s (%d bytes)", response.status_code, url, len(response.content))
        raise_for_status(response, self.source_id)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError("Invalid JSON response") from exc
        if not isinstance(payload, dict):
            raise ParseError("Expected a JSON object")
        return payload


# ── Helpers ──────────────────────────────────────────────────────────


def raise_for_status(response: httpx.Response, source_id: str) -> None:
    """Map an HTTP status to the enrichment error taxonomy."""
    status = response.status_code
    if 200 <= status < 300:
        return
    if status in (401, 403):
        raise AuthenticationRequiredError(source_id)
    if status == 404:
        raise NotFoundError()
    if status == 429:
        raise RateLimitedError(retry_after=parse_retry_after(response.headers.get("Retry-After")))
    raise NetworkError(f"HTTP {status}")


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header; HTTP-date values are ignored.

    Negative and non-finite values are ignored as well.
    """
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


def describe(identifiers: Identifiers) -> str:
    return ", ".join(f"{kind.value}: {value}" for kind, value in identifiers.items())
