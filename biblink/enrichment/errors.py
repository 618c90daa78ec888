"""Enrichment error taxonomy."""

from typing import Optional


class EnrichmentError(Exception):
    """Base class for every enrichment failure."""

    #: Whether retrying the same request later could succeed.
    retryable = False


class NoIdentifierError(EnrichmentError):
    """The known identifiers are not enough for this source."""

    def __init__(self, message: str = "No usable identifier for enrichment"):
        super().__init__(message)


class AuthenticationRequiredError(EnrichmentError):
    """A credential is missing or was rejected."""

    def __init__(self, source_id: str):
        self.source_id = source_id
        super().__init__(f"Authentication required for {source_id}")


class NotFoundError(EnrichmentError):
    """The source has no record of this paper."""

    def __init__(self, message: str = "Paper not found"):
        super().__init__(message)


class RateLimitedError(EnrichmentError):
    """HTTP 429; ``retry_after`` is the server's hint in seconds, if any."""

    retryable = True

    def __init__(self, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"Rate limited, retry after {retry_after:g} seconds"
        else:
            message = "Rate limited"
        super().__init__(message)


class NetworkError(EnrichmentError):
    """Connectivity problem, timeout, or server-side HTTP error."""

    retryable = True

    def __init__(self, message: str):
        super().__init__(f"Network error: {message}")


class ParseError(EnrichmentError):
    """The response was malformed or had an unexpected shape."""

    def __init__(self, message: str):
        super().__init__(f"Parse error: {message}")


class NoSourceAvailableError(EnrichmentError):
    """No configured source can handle the request."""

    def __init__(self, message: str = "No enrichment source could provide data"):
        super().__init__(message)


class AllSourcesFailedError(EnrichmentError):
    """Every attempted source failed; ``failures`` maps source id to its error."""

    def __init__(self, failures: dict[str, EnrichmentError]):
        self.failures = dict(failures)
        details = "; ".join(f"{source}: {error}" for source, error in self.failures.items())
        super().__init__(f"All enrichment sources failed ({details})")

    @property
    def retryable(self) -> bool:
        return bool(self.failures) and all(e.retryable for e in self.failures.values())

    @property
    def retry_after(self) -> Optional[float]:
        """Largest server hint among rate-limited sources."""
        hints = [
            e.retry_after
            for e in self.failures.values()
            if isinstance(e, RateLimitedError) and e.retry_after is not None
        ]
        return max(hints) if hints else None
