"""Enrichment orchestrator: concurrent fan-out over sources, merged in priority order.

Every selected source is queried at once. Results are folded by the
configured source priority, never by completion order, so the outcome is
deterministic. A failing source never aborts its siblings; only a call in
which no source succeeds raises.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Hashable, Iterable, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from biblink.core.identifiers import Identifiers, merge_identifiers
from biblink.core.settings import EnrichmentSettings, EnrichmentSettingsStore, RetryPolicy
from biblink.enrichment.errors import (
    AllSourcesFailedError,
    EnrichmentError,
    NetworkError,
    NoIdentifierError,
    NoSourceAvailableError,
)
from biblink.enrichment.models import (
    EnrichmentCapability,
    EnrichmentData,
    EnrichmentResult,
    merge,
)
from biblink.enrichment.plugin import EnrichmentPlugin, describe
from biblink.enrichment.queue import EnrichmentPriority, EnrichmentQueue, EnrichmentRequest
from biblink.enrichment.tracker import FailedRequestTracker

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[Hashable, EnrichmentResult], Any]


class EnrichmentService:
    """Coordinates enrichment across registered source plugins."""

    def __init__(
        self,
        plugins: Iterable[EnrichmentPlugin],
        settings: EnrichmentSettingsStore | EnrichmentSettings | None = None,
        queue: EnrichmentQueue | None = None,
        tracker: FailedRequestTracker | None = None,
        on_enrichment_complete: CompletionCallback | None = None,
    ):
        self._plugins = list(plugins)
        if isinstance(settings, EnrichmentSettingsStore):
            self.store = settings
        else:
            self.store = EnrichmentSettingsStore(settings)
        self.queue = queue or EnrichmentQueue()
        self.tracker = tracker or FailedRequestTracker()
        self.on_enrichment_complete = on_enrichment_complete

        self._sync_task: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._wakeup_loop: Optional[asyncio.AbstractEventLoop] = None

        logger.info(
            "EnrichmentService initialized with %d plugins: %s",
            len(self._plugins),
            ", ".join(p.source_id for p in self._plugins),
        )

    @property
    def settings(self) -> EnrichmentSettings:
        return self.store.settings

    # ── Plugin Lookup ────────────────────────────────────────────

    @property
    def registered_plugins(self) -> list[EnrichmentPlugin]:
        return list(self._plugins)

    def plugin_for(self, source_id: str) -> Optional[EnrichmentPlugin]:
        for plugin in self._plugins:
            if plugin.source_id == source_id:
                return plugin
        return None

    def plugins_supporting(self, capability: EnrichmentCapability) -> list[EnrichmentPlugin]:
        return [p for p in self._plugins if p.supports(capability)]

    def sorted_plugins(self) -> list[EnrichmentPlugin]:
        """Plugins in configured priority order; unlisted ones follow in registration order."""
        settings = self.settings
        listed_count = len(settings.source_priority)

        def rank(item: tuple[int, EnrichmentPlugin]) -> tuple[int, int]:
            index, plugin = item
            position = settings.rank_of(plugin.source_id)
            return (position if position is not None else listed_count, index)

        return [p for _, p in sorted(enumerate(self._plugins), key=rank)]

    # ── Enrichment ───────────────────────────────────────────────

    async def enrich_now(
        self,
        identifiers: Identifiers,
        existing_data: Optional[EnrichmentData] = None,
        capabilities: Optional[Iterable[EnrichmentCapability]] = None,
    ) -> EnrichmentResult:
        """Query every eligible source concurrently and merge what comes back.

        ``existing_data`` ranks below every source, so fresh values replace
        stored ones while its other fields are kept. ``capabilities``
        restricts the call to sources offering at least one of them.
        """
        if not identifiers:
            raise NoIdentifierError()

        plugins = self._select_plugins(identifiers, capabilities)
        if not plugins:
            raise NoSourceAvailableError()

        logger.info(
            "Enriching %s via %s", describe(identifiers), ", ".join(p.source_id for p in plugins)
        )
        outcomes = await asyncio.gather(
            *(self._call(plugin, identifiers) for plugin in plugins),
            return_exceptions=True,
        )

        successes: list[EnrichmentResult] = []
        failures: dict[str, EnrichmentError] = {}
        for plugin, outcome in zip(plugins, outcomes):
            if isinstance(outcome, EnrichmentResult):
                successes.append(outcome)
            elif isinstance(outcome, EnrichmentError):
                logger.warning("%s failed: %s", plugin.name, outcome)
                failures[plugin.source_id] = outcome
            else:
                # Programming errors and cancellation are not source failures
                raise outcome

        if not successes:
            raise AllSourcesFailedError(failures)

        # Lowest priority first so higher-priority values overwrite
        data = existing_data
        for result in reversed(successes):
            data = merge(result.data, data)

        resolved = dict(identifiers)
        for result in successes:
            resolved = merge_identifiers(resolved, result.resolved_identifiers)

        logger.info(
            "Enrichment complete: %d succeeded, %d failed", len(successes), len(failures)
        )
        return EnrichmentResult(data=data, resolved_identifiers=resolved, failures=failures)

    async def enrich_search_result(
        self, result, existing_data: Optional[EnrichmentData] = None
    ) -> EnrichmentResult:
        """Enrich a SearchResult or DeduplicatedResult by its identifiers."""
        return await self.enrich_now(result.identifiers, existing_data)

    async def enrich_with_retry(
        self,
        identifiers: Identifiers,
        existing_data: Optional[EnrichmentData] = None,
        policy: RetryPolicy | None = None,
    ) -> EnrichmentResult:
        """enrich_now with exponential backoff while every failure is transient.

        A server ``Retry-After`` hint is honored when it exceeds the backoff.
        The last error is re-raised once attempts run out.
        """
        policy = policy or self.settings.retry
        backoff = wait_exponential(
            multiplier=policy.base_delay, max=policy.max_delay
        ) + wait_random(0, policy.jitter)

        def wait(retry_state) -> float:
            delay = backoff(retry_state)
            hint = getattr(retry_state.outcome.exception(), "retry_after", None)
            if hint is not None and hint > delay:
                delay = hint
            logger.info(
                "Enrichment attempt %d failed, retrying in %.1fs",
                retry_state.attempt_number,
                delay,
            )
            return delay

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait,
            reraise=True,
        ):
            with attempt:
                return await self.enrich_now(identifiers, existing_data)

    def _select_plugins(
        self,
        identifiers: Identifiers,
        capabilities: Optional[Iterable[EnrichmentCapability]],
    ) -> list[EnrichmentPlugin]:
        wanted = set(capabilities) if capabilities is not None else None
        selected = []
        for plugin in self.sorted_plugins():
            if not self.settings.is_enabled(plugin.source_id):
                logger.debug("Skipping %s: disabled", plugin.source_id)
                continue
            if wanted is not None and not (wanted & plugin.capabilities):
                logger.debug("Skipping %s: no requested capability", plugin.source_id)
                continue
            if not plugin.can_enrich(identifiers):
                logger.debug("Skipping %s: no usable identifier", plugin.source_id)
                continue
            selected.append(plugin)
        return selected

    async def _call(self, plugin: EnrichmentPlugin, identifiers: Identifiers) -> EnrichmentResult:
        timeout = self.settings.request_timeout_seconds
        try:
            return await asyncio.wait_for(plugin.enrich(identifiers, None), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"{plugin.name} timed out after {timeout:g}s") from exc

    # ── Queue ────────────────────────────────────────────────────

    def queue_for_enrichment(
        self,
        target: Hashable,
        identifiers: Identifiers,
        priority: EnrichmentPriority = EnrichmentPriority.LIBRARY_PAPER,
    ) -> EnrichmentRequest:
        request = self.queue.enqueue(target, identifiers, priority)
        if self._wakeup is not None:
            self._wakeup.set()
        return request

    def queue_depth(self) -> int:
        return len(self.queue)

    def queue_failed_for_retry(
        self, priority: EnrichmentPriority = EnrichmentPriority.BACKGROUND_SYNC
    ) -> int:
        """Re-queue every tracked failure; returns how many were queued."""
        failed = self.tracker.requests_for_retry()
        for entry in failed:
            self.queue_for_enrichment(entry.target, entry.identifiers, priority)
        return len(failed)

    async def process_next_queued(self) -> Optional[EnrichmentResult]:
        """Enrich the most urgent queued request.

        Returns None when the queue is empty or the request failed; failures
        are handed to the tracker.
        """
        request = self.queue.dequeue()
        if request is None:
            return None

        try:
            result = await self.enrich_now(request.identifiers)
        except EnrichmentError as exc:
            logger.warning("Queued enrichment of %s failed: %s", request.target, exc)
            self.tracker.record_failure(request.target, request.identifiers, exc)
            return None

        self.tracker.clear_failure(request.target)
        if self.on_enrichment_complete is not None:
            outcome = self.on_enrichment_complete(request.target, result)
            if inspect.isawaitable(outcome):
                await outcome
        return result

    # ── Background Sync ──────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    def start_background_sync(self) -> bool:
        """Drain the queue on a background task; must be called inside a running loop.

        Returns False when auto-sync is disabled in settings.
        """
        if self.is_running:
            return True
        if not self.settings.auto_sync_enabled:
            logger.info("Auto-sync disabled, background sync not started")
            return False
        self._sync_task = asyncio.get_running_loop().create_task(self._sync_loop())
        logger.info("Background sync started")
        return True

    async def stop_background_sync(self) -> None:
        task = self._sync_task
        self._sync_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Background sync stopped")

    async def _sync_loop(self) -> None:
        wakeup = self._loop_wakeup()
        while True:
            if not len(self.queue):
                wakeup.clear()
                await wakeup.wait()
                continue
            try:
                await self.process_next_queued()
            except Exception:
                # Per-item errors are logged and the loop keeps draining
                logger.exception("Background enrichment failed")

    def _loop_wakeup(self) -> asyncio.Event:
        loop = asyncio.get_running_loop()
        if self._wakeup is None or self._wakeup_loop is not loop:
            self._wakeup = asyncio.Event()
            self._wakeup_loop = loop
        return self._wakeup


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, EnrichmentError) and bool(exc.retryable)
