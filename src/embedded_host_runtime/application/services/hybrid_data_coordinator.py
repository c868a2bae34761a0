"""Hybrid data coordinator reconciling immediate, enhanced and dynamic data tiers."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
from typing import Any

from pydantic import ValidationError

from embedded_host_runtime.domain.errors import (
    BackendError,
    ClientRequestError,
    TransientBackendError,
)
from embedded_host_runtime.domain.host_context import (
    TIER_SPECIFICITY,
    DataTier,
    EnhancedPayload,
    HostContext,
)
from embedded_host_runtime.domain.ports import HostRegistry, QueryEndpoint
from embedded_host_runtime.domain.queries import (
    QueryDescriptor,
    QueryResult,
    QueryStateSnapshot,
    ServedValue,
)

logger = logging.getLogger(__name__)

_DEFAULT_CONTEXT_GLOBAL = "hostContext"
_DEFAULT_ENHANCED_GLOBAL = "enhancedData"
_CONTEXT_FACT = "context"
_ENHANCED_FACT = "enhanced"

SleepFunction = Callable[[float], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter for transient failures."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.2
    max_delay_seconds: float = 2.0
    jitter_ratio: float = 0.2

    def delay_for(self, attempt_number: int) -> float:
        """Return the delay before retrying after the given failed attempt."""

        exponent = max(attempt_number - 1, 0)
        delay = min(self.base_delay_seconds * (2**exponent), self.max_delay_seconds)
        ratio = max(min(self.jitter_ratio, 1.0), 0.0)
        if ratio > 0:
            jitter_window = delay * ratio
            delay = max(delay + random.uniform(-jitter_window, jitter_window), 0.0)
        return delay


@dataclass(slots=True)
class _CacheEntry:
    last_access: float
    result: QueryResult | None = None
    fetched_at: float = 0.0
    invalidated: bool = False
    last_error: str | None = None
    task: asyncio.Task[QueryResult] | None = None

    @property
    def fetching(self) -> bool:
        return self.task is not None and not self.task.done()


class HybridDataCoordinator:
    """Serve host-injected tiers synchronously and dynamic queries from a shared cache."""

    def __init__(
        self,
        registry: HostRegistry,
        query_endpoint: QueryEndpoint,
        *,
        context_global: str = _DEFAULT_CONTEXT_GLOBAL,
        enhanced_global: str = _DEFAULT_ENHANCED_GLOBAL,
        stale_after_seconds: float = 30.0,
        evict_after_seconds: float = 300.0,
        request_timeout_seconds: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        significant_difference_ratio: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunction = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._query_endpoint = query_endpoint
        self._context_global = context_global
        self._enhanced_global = enhanced_global
        self._stale_after_seconds = max(stale_after_seconds, 0.0)
        self._evict_after_seconds = max(evict_after_seconds, self._stale_after_seconds)
        self._request_timeout_seconds = request_timeout_seconds
        self._retry_policy = retry_policy or RetryPolicy()
        self._significant_difference_ratio = significant_difference_ratio
        self._clock = clock
        self._sleep = sleep
        self._context: HostContext | None = None
        self._enhanced: EnhancedPayload | None = None
        self._host_captured = False
        self._entries: dict[str, _CacheEntry] = {}
        self._served_by: dict[str, DataTier] = {}

    def capture_host_snapshot(self) -> HostContext:
        """Snapshot tier 1 and tier 2 host payloads."""

        self._context = self._read_context()
        self._enhanced = self._read_enhanced()
        self._host_captured = True
        self._served_by[_CONTEXT_FACT] = self._context.provenance
        if self._enhanced is not None:
            self._served_by[_ENHANCED_FACT] = DataTier.ENHANCED
        return self._context

    def immediate(self) -> HostContext:
        """Return the host context snapshot, or the documented fallback."""

        if not self._host_captured:
            self.capture_host_snapshot()
        assert self._context is not None
        return self._context

    def enhanced(self) -> EnhancedPayload | None:
        """Return precomputed aggregates, or None when the host supplied none."""

        if not self._host_captured:
            self.capture_host_snapshot()
        return self._enhanced

    async def dynamic(
        self,
        query: QueryDescriptor,
        *,
        revalidate: bool = False,
        background_revalidate: bool = True,
    ) -> QueryResult:
        """Return a cached or freshly fetched result for one query."""

        key = query.cache_key()
        now = self._clock()
        self._evict_idle(now, keep=key)
        entry = self._entries.get(key)
        if entry is None:
            entry = _CacheEntry(last_access=now)
            self._entries[key] = entry
        entry.last_access = now

        cached = entry.result
        if cached is not None and not revalidate:
            self._served_by[key] = DataTier.DYNAMIC
            if self._is_stale(entry, now) and background_revalidate:
                self._ensure_fetch(key, query, entry)
            return cached

        task = self._ensure_fetch(key, query, entry)
        return await asyncio.shield(task)

    def invalidate(self, key_or_prefix: str) -> int:
        """Mark matching entries stale; returns how many were marked."""

        marked = 0
        for key, entry in self._entries.items():
            if key == key_or_prefix or key.startswith(key_or_prefix):
                entry.invalidated = True
                marked += 1
        logger.debug("Invalidated %s cached quer(ies) for '%s'.", marked, key_or_prefix)
        return marked

    def query_state(self, query: QueryDescriptor) -> QueryStateSnapshot:
        """Return last known good data plus fetch and error indicators."""

        key = query.cache_key()
        entry = self._entries.get(key)
        if entry is None:
            return QueryStateSnapshot(key=key)
        return QueryStateSnapshot(
            key=key,
            result=entry.result,
            is_fetching=entry.fetching,
            is_stale=entry.result is None or self._is_stale(entry, self._clock()),
            last_error=entry.last_error,
        )

    def resolve_count(self, name: str, query: QueryDescriptor | None = None) -> ServedValue:
        """Pick the freshest count among tiers; ties go to the more specific tier."""

        candidates: list[ServedValue] = []
        enhanced = self.enhanced()
        if enhanced is not None and name in enhanced.counts:
            candidates.append(
                ServedValue(
                    name=name,
                    value=enhanced.counts[name],
                    tier=DataTier.ENHANCED,
                    as_of=enhanced.calculated_at,
                )
            )
        if query is not None:
            entry = self._entries.get(query.cache_key())
            if entry is not None and entry.result is not None:
                candidates.append(
                    ServedValue(
                        name=name,
                        value=entry.result.total,
                        tier=DataTier.DYNAMIC,
                        as_of=entry.result.fetched_at,
                    )
                )

        if not candidates:
            self._served_by[name] = DataTier.FALLBACK
            return ServedValue(name=name, value=None, tier=DataTier.FALLBACK)

        alternatives = {candidate.tier.value: candidate.value for candidate in candidates}
        self._warn_on_divergence(name, alternatives)
        winner = max(
            candidates,
            key=lambda candidate: (
                candidate.as_of or datetime.min.replace(tzinfo=UTC),
                TIER_SPECIFICITY[candidate.tier],
            ),
        )
        self._served_by[name] = winner.tier
        return ServedValue(
            name=name,
            value=winner.value,
            tier=winner.tier,
            as_of=winner.as_of,
            alternatives=alternatives,
        )

    def served_by(self) -> dict[str, DataTier]:
        """Return the tier that last served each fact or query key."""

        return dict(self._served_by)

    async def close(self) -> None:
        """Cancel in-flight fetches."""

        tasks = [entry.task for entry in self._entries.values() if entry.fetching]
        for task in tasks:
            assert task is not None
            task.cancel()
        for task in tasks:
            assert task is not None
            with suppress(asyncio.CancelledError, Exception):
                await task
        self._entries.clear()

    def _read_context(self) -> HostContext:
        raw = self._registry.get(self._context_global)
        if raw is None:
            logger.warning(
                "Host context global '%s' is missing; using fallback context.",
                self._context_global,
            )
            return HostContext.fallback()
        try:
            context = self._parse_payload(HostContext, raw)
        except (ValidationError, ValueError, TypeError) as exc:
            logger.warning(
                "Host context global '%s' is malformed; using fallback context: %s",
                self._context_global,
                exc,
            )
            return HostContext.fallback()
        return context.model_copy(update={"provenance": DataTier.IMMEDIATE})

    def _read_enhanced(self) -> EnhancedPayload | None:
        raw = self._registry.get(self._enhanced_global)
        if raw is None:
            return None
        try:
            return self._parse_payload(EnhancedPayload, raw)
        except (ValidationError, ValueError, TypeError) as exc:
            logger.warning(
                "Enhanced payload global '%s' is malformed; ignoring it: %s",
                self._enhanced_global,
                exc,
            )
            return None

    def _parse_payload(self, model: Any, raw: object) -> Any:
        if isinstance(raw, str | bytes):
            return model.model_validate(json.loads(raw))
        return model.model_validate(raw)

    def _ensure_fetch(
        self,
        key: str,
        query: QueryDescriptor,
        entry: _CacheEntry,
    ) -> asyncio.Task[QueryResult]:
        task = entry.task
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(
            self._fetch_with_retry(key, query),
            name=f"dynamic-query-{query.record_type}",
        )
        entry.task = task
        task.add_done_callback(partial(self._fetch_finished, key))
        return task

    def _fetch_finished(self, key: str, task: asyncio.Task[QueryResult]) -> None:
        entry = self._entries.get(key)
        if entry is not None and entry.task is task:
            entry.task = None
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("Dynamic query fetch for '%s' finished with error: %s", key, error)

    async def _fetch_with_retry(self, key: str, query: QueryDescriptor) -> QueryResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                page = await self._fetch_once(query)
            except BackendError as exc:
                if not exc.retryable or attempt >= self._retry_policy.max_attempts:
                    self._record_error(key, exc)
                    logger.warning(
                        "Dynamic query '%s' failed after %s attempt(s) (%s): %s",
                        query.record_type,
                        attempt,
                        exc.category.value,
                        exc,
                    )
                    raise
                delay = self._retry_policy.delay_for(attempt)
                logger.info(
                    "Dynamic query '%s' attempt %s failed transiently; retrying in %.2fs.",
                    query.record_type,
                    attempt,
                    delay,
                )
                await self._sleep(delay)
                continue

            result = QueryResult(
                key=key,
                items=list(page.items),
                total=page.total,
                fetched_at=datetime.now(tz=UTC),
                stale_after_seconds=self._stale_after_seconds,
            )
            self._store_result(key, result)
            return result

    async def _fetch_once(self, query: QueryDescriptor) -> Any:
        try:
            return await asyncio.wait_for(
                self._query_endpoint.fetch_records(query),
                timeout=self._request_timeout_seconds,
            )
        except TimeoutError as exc:
            raise TransientBackendError(
                f"Query '{query.record_type}' timed out after "
                f"{self._request_timeout_seconds}s."
            ) from exc
        except BackendError:
            raise
        except OSError as exc:
            raise TransientBackendError(f"Query '{query.record_type}' failed: {exc}") from exc
        except Exception as exc:
            logger.exception("Query endpoint raised unexpectedly for '%s'.", query.record_type)
            raise ClientRequestError(
                f"Query '{query.record_type}' failed unexpectedly: {exc}"
            ) from exc

    def _store_result(self, key: str, result: QueryResult) -> None:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            entry = _CacheEntry(last_access=now)
            self._entries[key] = entry
        entry.result = result
        entry.fetched_at = now
        entry.invalidated = False
        entry.last_error = None
        self._served_by[key] = DataTier.DYNAMIC

    def _record_error(self, key: str, error: BackendError) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.last_error = f"{error.category.value}: {error}"

    def _is_stale(self, entry: _CacheEntry, now: float) -> bool:
        return entry.invalidated or now - entry.fetched_at >= self._stale_after_seconds

    def _evict_idle(self, now: float, keep: str) -> None:
        for key, entry in list(self._entries.items()):
            if key == keep or entry.fetching:
                continue
            if now - entry.last_access >= self._evict_after_seconds:
                del self._entries[key]

    def _warn_on_divergence(self, name: str, alternatives: dict[str, Any]) -> None:
        values = [value for value in alternatives.values() if isinstance(value, int | float)]
        if len(values) < 2:
            return
        highest = max(abs(value) for value in values)
        spread = max(values) - min(values)
        if highest and spread / highest > self._significant_difference_ratio:
            logger.warning("Tier values for '%s' diverge significantly: %s", name, alternatives)


__all__ = ["HybridDataCoordinator", "RetryPolicy"]
