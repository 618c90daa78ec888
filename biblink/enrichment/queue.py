"""Priority queue of pending enrichment requests."""

import heapq
import itertools
import logging
import uuid
from datetime import datetime, timezone
from enum import IntEnum
from typing import Hashable, Optional

from pydantic import BaseModel, ConfigDict, Field

from biblink.core.identifiers import Identifiers

logger = logging.getLogger(__name__)


class EnrichmentPriority(IntEnum):
    """Lower value = served first."""

    USER_TRIGGERED = 0
    RECENTLY_VIEWED = 1
    LIBRARY_PAPER = 2
    BACKGROUND_SYNC = 3


class EnrichmentRequest(BaseModel):
    """One queued enrichment of ``target``, an opaque host-side key."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    target: Hashable
    identifiers: Identifiers
    priority: EnrichmentPriority = EnrichmentPriority.LIBRARY_PAPER
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EnrichmentQueue:
    """Most urgent priority first, FIFO within a priority.

    A target is queued at most once. Re-queuing it keeps the more urgent
    priority and the latest identifiers.
    """

    def __init__(self):
        self._heap: list[tuple[int, int, str]] = []
        self._requests: dict[str, EnrichmentRequest] = {}
        self._by_target: dict[Hashable, str] = {}
        self._counter = itertools.count()

    def enqueue(
        self,
        target: Hashable,
        identifiers: Identifiers,
        priority: EnrichmentPriority = EnrichmentPriority.LIBRARY_PAPER,
    ) -> EnrichmentRequest:
        existing_id = self._by_target.get(target)
        if existing_id is not None:
            existing = self._requests[existing_id]
            if priority >= existing.priority:
                updated = existing.model_copy(update={"identifiers": dict(identifiers)})
                self._requests[existing_id] = updated
                return updated
            # Heap entry for the old request is skipped lazily on dequeue
            self._discard(existing_id)

        request = EnrichmentRequest(
            target=target, identifiers=dict(identifiers), priority=priority
        )
        self._requests[request.id] = request
        self._by_target[target] = request.id
        heapq.heappush(self._heap, (int(priority), next(self._counter), request.id))
        logger.debug("Queued %s at %s (depth %d)", target, priority.name, len(self))
        return request

    def dequeue(self) -> Optional[EnrichmentRequest]:
        """Remove and return the next request, or None when empty."""
        while self._heap:
            _, _, request_id = heapq.heappop(self._heap)
            request = self._requests.get(request_id)
            if request is None:
                continue
            self._discard(request_id)
            return request
        return None

    def remove(self, target: Hashable) -> bool:
        request_id = self._by_target.get(target)
        if request_id is None:
            return False
        self._discard(request_id)
        return True

    def clear(self) -> None:
        self._heap.clear()
        self._requests.clear()
        self._by_target.clear()

    def __contains__(self, target: Hashable) -> bool:
        return target in self._by_target

    def __len__(self) -> int:
        return len(self._requests)

    def _discard(self, request_id: str) -> None:
        request = self._requests.pop(request_id)
        self._by_target.pop(request.target, None)
