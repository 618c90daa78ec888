"""Failed enrichment requests, kept for a later retry pass."""

import logging
from datetime import datetime, timezone
from typing import Hashable

from pydantic import BaseModel, ConfigDict, Field

from biblink.core.identifiers import Identifiers

logger = logging.getLogger(__name__)


class FailedRequest(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target: Hashable
    identifiers: Identifiers
    error: str
    retry_count: int = 0
    failed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FailedRequestTracker:
    """One entry per target; repeated failures bump ``retry_count``."""

    def __init__(self):
        self._failures: dict[Hashable, FailedRequest] = {}

    def record_failure(
        self, target: Hashable, identifiers: Identifiers, error: Exception | str
    ) -> FailedRequest:
        previous = self._failures.get(target)
        retry_count = previous.retry_count + 1 if previous is not None else 0
        entry = FailedRequest(
            target=target,
            identifiers=dict(identifiers),
            error=str(error),
            retry_count=retry_count,
        )
        self._failures[target] = entry
        logger.debug("Recorded failure for %s (retry %d): %s", target, retry_count, error)
        return entry

    def clear_failure(self, target: Hashable) -> None:
        self._failures.pop(target, None)

    def clear_all(self) -> None:
        self._failures.clear()

    @property
    def failure_count(self) -> int:
        return len(self._failures)

    def get(self, target: Hashable) -> FailedRequest | None:
        return self._failures.get(target)

    def requests_for_retry(self) -> list[FailedRequest]:
        """All failures, oldest first."""
        return sorted(self._failures.values(), key=lambda f: f.failed_at)
