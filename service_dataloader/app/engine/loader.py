"""
Keyed, deduplicating, retrying, cache-backed asynchronous loader.

Every feature service loads its data through ``DataLoader.load_data``. For a
given key at most one producer call is in flight: callers arriving while a
load is running attach to the same task and see the same outcome. Successful
results are cached (optionally with a TTL), failures are not.

The engine is bound to a single asyncio event loop. Table and counter
updates happen synchronously between suspension points, so entries need no
lock; only singleton construction is guarded.
"""

import asyncio
import inspect
import json
import re
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern, TypeVar, Union

from shared.config import LoaderConfig, get_loader_config
from shared.errors import InvalidKeyError, LoadTimeoutError
from shared.logging import get_logger, set_load_context
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.retry import RetryConfig, execute_with_retry

from .events import (
    CacheCleanup,
    CacheCleared,
    CacheHit,
    EventBus,
    Listener,
    LoadFailed,
    LoaderEvent,
    LoadStarted,
    LoadSucceeded,
    RequestCancelled,
    RequestDeduplicated,
    RetryScheduled,
)
from .progress import ProgressTracker
from .state import LoadEntry, LoaderMetrics, LoadingState, LoadOptions, LoadStatus

T = TypeVar("T")
Producer = Callable[[], Union[Awaitable[T], T]]

DEFAULT_VALUE_SIZE = 1024


class DataLoader:
    """Single-flight loader with result cache, retries and progress tracking."""

    _instance: Optional["DataLoader"] = None
    _instance_lock = threading.Lock()

    def __init__(self,
                 config: Optional[LoaderConfig] = None,
                 *,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config or get_loader_config()
        if metrics is None and self.config.enable_metrics:
            metrics = get_metrics_collector(self.config.service_name)
            if self.config.metrics_port is not None:
                metrics.start_metrics_server(self.config.metrics_port)
        self.metrics = metrics
        self.logger = get_logger("dataloader.engine")

        self._clock = clock
        self._entries: Dict[str, LoadEntry] = {}
        self._counters = LoaderMetrics()
        self._events = EventBus()
        self._cleanup_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Singleton access
    # ------------------------------------------------------------------

    @classmethod
    def get_instance(cls,
                     config: Optional[LoaderConfig] = None,
                     metrics: Optional[MetricsCollector] = None) -> "DataLoader":
        """Return the process-wide loader, creating it on first use.

        ``config`` and ``metrics`` only apply when the instance is created.
        """
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls(config, metrics=metrics)
            return cls._instance

    @classmethod
    def destroy(cls) -> None:
        """Tear down the process-wide loader; the next ``get_instance`` builds a new one."""
        with cls._instance_lock:
            instance, cls._instance = cls._instance, None
        if instance is not None:
            instance.close()

    def close(self) -> None:
        """Drop all entries, counters, listeners and the cleanup task.

        In-flight producer tasks are not cancelled; their callers still get
        the outcome, but the engine no longer records it.
        """
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

        forgotten = sum(1 for entry in self._entries.values() if entry.status is LoadStatus.LOADING)
        self._entries.clear()
        self._counters = LoaderMetrics()
        self._events.clear()
        self._update_gauges()
        self.logger.info("Loader closed", forgotten_loads=forgotten)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_data(self,
                        key: str,
                        producer: Producer,
                        options: Optional[LoadOptions] = None,
                        **overrides) -> Any:
        """
        Load the value for ``key``, calling ``producer`` only when needed.

        Served from cache when a fresh value exists, attached to the running
        load when one is in flight, otherwise a new load is started. Keyword
        ``overrides`` are ``LoadOptions`` fields (``retries=3``,
        ``retry_delay=0.5``, ``timeout=10``, ``cache_ttl=300``...).

        Raises the producer's final exception, ``LoadTimeoutError`` when the
        last attempt timed out, or ``InvalidKeyError`` for an empty key.
        """
        if not isinstance(key, str) or not key:
            raise InvalidKeyError(key)
        if not callable(producer):
            raise TypeError("producer must be a zero-argument callable")

        opts = self._resolve_options(options, overrides)
        self._counters.total_requests += 1
        now = self._clock()

        entry = self._entries.get(key)
        if entry is not None and entry.has_value:
            if entry.is_expired(now):
                self.logger.debug("Cached value expired", key=key)
                self._discard(key)
                entry = None
            elif not opts.skip_cache:
                return self._serve_hit(entry, now)

        if entry is not None and entry.status is LoadStatus.LOADING and entry.task is not None:
            self._counters.cache_misses += 1
            self._counters.deduplicated_requests += 1
            self._record_request("deduplicated")
            self.logger.debug("Request deduplicated", key=key)
            self._events.publish(RequestDeduplicated(key=key))
            return await asyncio.shield(entry.task)

        self._counters.cache_misses += 1
        self._record_request("miss")
        task = self._start_load(key, producer, opts, now)
        return await asyncio.shield(task)

    def _serve_hit(self, entry: LoadEntry, now: float) -> Any:
        entry.touch(now)
        self._counters.cache_hits += 1
        self._record_request("hit")
        self.logger.debug("Cache hit", key=entry.key)
        self._events.publish(CacheHit(key=entry.key, data=entry.value))
        return entry.value

    def _start_load(self, key: str, producer: Producer, opts: LoadOptions, now: float) -> asyncio.Task:
        retry_config = self._retry_config(opts)

        # The entry and its task are installed before the first suspension
        # point so every later caller for this key dedups onto them.
        # A forced refresh sets the current value aside until it settles.
        stale = self._entries.get(key)
        if stale is not None and stale.has_value:
            del self._entries[key]
        else:
            stale = None
            self._discard(key)
        entry = LoadEntry(
            key=key,
            status=LoadStatus.LOADING,
            attempt=1,
            started_at=now,
            stale=stale,
            progress=ProgressTracker(
                retry_config.max_attempts,
                self.config.expected_load_duration,
                self._clock,
            ),
        )
        self._entries[key] = entry
        self._counters.active_requests += 1
        entry.task = asyncio.get_running_loop().create_task(
            self._run_load(entry, producer, opts, retry_config),
            name=f"dataloader:{key}",
        )
        self._update_gauges()

        self.logger.info("Load started", key=key, max_attempts=retry_config.max_attempts)
        self._events.publish(LoadStarted(key=key, max_attempts=retry_config.max_attempts))
        return entry.task

    async def _run_load(self, entry: LoadEntry, producer: Producer,
                        opts: LoadOptions, retry_config: RetryConfig) -> Any:
        key = entry.key
        set_load_context(key)
        self._notify_progress(opts, entry.progress.value())

        async def attempt_once(attempt: int) -> Any:
            entry.attempt = attempt
            set_load_context(key, attempt)
            self._notify_progress(opts, entry.progress.begin_attempt(attempt))
            self._counters.producer_invocations += 1
            return await self._invoke(key, producer, opts.timeout, attempt)

        def on_retry(attempt: int, delay: float, error: BaseException) -> None:
            self._increment("loader_retries_total")
            if self._is_current(entry):
                self._events.publish(RetryScheduled(key=key, attempt=attempt, delay=delay, error=error))

        try:
            result = await execute_with_retry(
                attempt_once,
                retry_config,
                name="dataloader",
                on_retry=on_retry,
            )
        except asyncio.CancelledError:
            if self._is_current(entry):
                self._counters.active_requests -= 1
                if not self._restore_stale(entry):
                    del self._entries[key]
                self._update_gauges()
            self.logger.warning("Load cancelled", key=key)
            raise
        except Exception as exc:
            self._settle_failure(entry, exc, opts)
            raise

        self._settle_success(entry, result, opts)
        return result

    async def _invoke(self, key: str, producer: Producer, timeout: Optional[float], attempt: int) -> Any:
        # A synchronous raise propagates into the retry loop as a failed attempt.
        outcome = producer()
        if not inspect.isawaitable(outcome):
            return outcome
        if timeout is None:
            return await outcome

        future = asyncio.ensure_future(outcome)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            if future.done():
                # Settled right at the deadline; its own outcome wins.
                return future.result()
            # The producer keeps running; whatever it settles with is ignored.
            future.add_done_callback(self._drain_abandoned)
            self.logger.warning("Load attempt timed out", key=key, timeout=timeout, attempt=attempt)
            raise LoadTimeoutError(key, timeout, attempt) from None

    def _drain_abandoned(self, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.logger.debug("Abandoned producer failed after timeout", error=str(exc))

    def _settle_success(self, entry: LoadEntry, result: Any, opts: LoadOptions) -> None:
        now = self._clock()
        load_time = now - (entry.started_at or now)
        self._notify_progress(opts, entry.progress.complete())

        if not self._is_current(entry):
            self.logger.debug("Discarding result of a forgotten load", key=entry.key)
            return

        if entry.stale is not None:
            self._counters.memory_usage -= entry.stale.size
            entry.stale = None
        entry.status = LoadStatus.SUCCEEDED
        entry.task = None
        entry.error = None
        entry.value = result
        entry.cached_at = now
        entry.expires_at = now + opts.cache_ttl if opts.cache_ttl is not None else None
        entry.last_accessed = now
        self._store_size(entry, result)

        self._counters.active_requests -= 1
        self._counters.record_load_time(load_time)
        self._increment("loader_loads_total", result="success")
        self._observe("loader_load_duration_seconds", load_time, result="success")
        self._update_gauges()

        self.logger.info("Load succeeded", key=entry.key, attempts=entry.attempt, load_time=load_time)
        self._events.publish(LoadSucceeded(key=entry.key, data=result, load_time=load_time, attempts=entry.attempt))

    def _settle_failure(self, entry: LoadEntry, exc: Exception, opts: LoadOptions) -> None:
        now = self._clock()
        load_time = now - (entry.started_at or now)
        self._notify_progress(opts, entry.progress.complete())

        if not self._is_current(entry):
            self.logger.debug("Discarding failure of a forgotten load", key=entry.key, error=str(exc))
            return

        kept_cached_value = self._restore_stale(entry)
        if not kept_cached_value:
            entry.status = LoadStatus.FAILED
            entry.task = None
            entry.value = None
            entry.cached_at = None
            entry.expires_at = None
            entry.error = exc

        self._counters.active_requests -= 1
        self._counters.record_failure()
        self._increment("loader_loads_total", result="failure")
        self._observe("loader_load_duration_seconds", load_time, result="failure")
        self._update_gauges()

        self.logger.warning(
            "Load failed",
            key=entry.key,
            attempts=entry.attempt,
            error_type=type(exc).__name__,
            error=str(exc),
            kept_cached_value=kept_cached_value,
        )
        self._events.publish(LoadFailed(key=entry.key, error=exc, attempts=entry.attempt))

    # ------------------------------------------------------------------
    # Loading-state introspection
    # ------------------------------------------------------------------

    def get_loading_state(self, key: str) -> Optional[LoadingState]:
        """Snapshot of the key's load, or ``None`` when the engine has no entry."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        loading = entry.status is LoadStatus.LOADING
        progress = entry.progress.value() if entry.progress is not None else 0.0
        remaining = None
        if loading and self._counters.average_load_time > 0 and entry.started_at is not None:
            elapsed = self._clock() - entry.started_at
            remaining = max(0.0, self._counters.average_load_time - elapsed)

        return LoadingState(
            is_loading=loading,
            progress=progress,
            attempt=entry.attempt,
            error=entry.error,
            start_time=entry.started_at,
            estimated_time_remaining=remaining,
        )

    def is_loading(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.status is LoadStatus.LOADING

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self, pattern: Optional[Union[str, Pattern[str]]] = None) -> int:
        """
        Evict every entry, or only those whose key matches ``pattern``.

        ``pattern`` is a regular expression (string or compiled) tested with
        ``search``. In-flight loads among the evicted keys are forgotten, not
        cancelled. Returns the number of evicted entries.
        """
        if pattern is None:
            keys = list(self._entries)
        else:
            regex = re.compile(pattern)
            keys = [key for key in self._entries if regex.search(key)]

        for key in keys:
            self._discard(key)
        self._update_gauges()

        shown = pattern.pattern if isinstance(pattern, re.Pattern) else pattern
        self.logger.info("Cache cleared", pattern=shown, removed=len(keys))
        self._events.publish(CacheCleared(pattern=pattern, removed=len(keys)))
        return len(keys)

    def cancel_request(self, key: str) -> bool:
        """Forget the in-flight load for ``key``; attached callers still get its outcome.

        Cancelling a forced refresh leaves the previously cached value in place.
        """
        entry = self._entries.get(key)
        if entry is None or entry.status is not LoadStatus.LOADING:
            return False

        del self._entries[key]
        self._counters.active_requests -= 1
        self._restore_stale(entry)
        self._update_gauges()
        self.logger.info("Request cancelled", key=key)
        self._events.publish(RequestCancelled(key=key))
        return True

    def purge_expired(self) -> int:
        """Remove cached values whose TTL has elapsed."""
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if entry.has_value and entry.is_expired(now)
        ]
        for key in expired:
            self._discard(key)

        if expired:
            self._update_gauges()
            self.logger.debug("Expired entries purged", removed=len(expired))
            self._events.publish(CacheCleanup(removed=len(expired)))
        return len(expired)

    def start_cleanup_task(self, interval: Optional[float] = None) -> asyncio.Task:
        """Purge expired entries every ``interval`` seconds on the running loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        period = interval if interval is not None else self.config.cleanup_interval
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(period), name="dataloader:cleanup"
        )
        return self._cleanup_task

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.purge_expired()

    def cached_keys(self) -> List[str]:
        """Keys currently holding a fresh value."""
        now = self._clock()
        return [
            key for key, entry in self._entries.items()
            if entry.has_value and not entry.is_expired(now)
        ]

    def _discard(self, key: str) -> Optional[LoadEntry]:
        entry = self._entries.pop(key, None)
        if entry is None:
            return None
        if entry.has_value:
            self._counters.memory_usage -= entry.size
        elif entry.status is LoadStatus.LOADING:
            self._counters.active_requests -= 1
            if entry.stale is not None:
                self._counters.memory_usage -= entry.stale.size
        return entry

    def _is_current(self, entry: LoadEntry) -> bool:
        return self._entries.get(entry.key) is entry

    def _restore_stale(self, entry: LoadEntry) -> bool:
        """Put back the value an unsuccessful refresh was replacing."""
        stale, entry.stale = entry.stale, None
        if stale is None:
            return False
        self._entries[entry.key] = stale
        return True

    def _store_size(self, entry: LoadEntry, value: Any) -> None:
        size = self._estimate_size(value)
        self._ensure_capacity(size, exclude=entry.key)
        entry.size = size
        self._counters.memory_usage += size

    def _ensure_capacity(self, required: int, exclude: str) -> None:
        limit = self.config.max_cache_size
        if self._counters.memory_usage + required <= limit:
            return

        candidates = sorted(
            (entry for key, entry in self._entries.items()
             if key != exclude and entry.has_value),
            key=lambda entry: entry.last_accessed,
        )
        for entry in candidates:
            self._discard(entry.key)
            self.logger.debug("Evicted least recently used entry", key=entry.key, size=entry.size)
            if self._counters.memory_usage + required <= limit:
                break

    @staticmethod
    def _estimate_size(value: Any) -> int:
        try:
            return len(json.dumps(value, default=str)) * 2
        except (TypeError, ValueError):
            return DEFAULT_VALUE_SIZE

    # ------------------------------------------------------------------
    # Metrics and events
    # ------------------------------------------------------------------

    def get_metrics(self) -> LoaderMetrics:
        return self._counters.copy()

    def reset_metrics(self) -> None:
        """Zero the counters, keeping the live ``active_requests`` and ``memory_usage``."""
        self._counters = LoaderMetrics(
            active_requests=self._counters.active_requests,
            memory_usage=self._counters.memory_usage,
        )

    @property
    def events(self) -> EventBus:
        return self._events

    def subscribe(self, listener: Listener,
                  event_type: type = LoaderEvent) -> Callable[[], None]:
        return self._events.subscribe(listener, event_type)

    def unsubscribe(self, listener: Listener) -> None:
        self._events.unsubscribe(listener)

    def _record_request(self, outcome: str) -> None:
        self._increment("loader_requests_total", outcome=outcome)

    def _increment(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    def _observe(self, metric_name: str, value: float, **labels) -> None:
        if self.metrics:
            self.metrics.observe_histogram(metric_name, value, **labels)

    def _update_gauges(self) -> None:
        if not self.metrics:
            return
        self.metrics.set_gauge("loader_active_loads", self._counters.active_requests)
        self.metrics.set_gauge(
            "loader_cache_entries",
            sum(1 for entry in self._entries.values() if entry.has_value),
        )

    def _notify_progress(self, opts: LoadOptions, progress: float) -> None:
        if opts.on_progress is None:
            return
        try:
            opts.on_progress(progress)
        except Exception as exc:
            self.logger.error("Progress callback failed", error=str(exc))

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def _resolve_options(self, options: Optional[LoadOptions], overrides: Dict[str, Any]) -> LoadOptions:
        opts = options or LoadOptions()
        if overrides:
            opts = opts.merged(**overrides)

        return LoadOptions(
            retries=opts.retries if opts.retries is not None else self.config.default_retries,
            retry_delay=opts.retry_delay if opts.retry_delay is not None else self.config.default_retry_delay,
            backoff=opts.backoff or self.config.backoff_strategy,
            timeout=opts.timeout if opts.timeout is not None else self.config.default_timeout,
            cache_ttl=opts.cache_ttl if opts.cache_ttl is not None else self.config.default_cache_ttl,
            skip_cache=opts.skip_cache,
            on_progress=opts.on_progress,
        )

    def _retry_config(self, opts: LoadOptions) -> RetryConfig:
        return RetryConfig(
            max_attempts=max(1, opts.retries or 0),
            base_delay=opts.retry_delay,
            max_delay=self.config.max_retry_delay,
            exponential_base=self.config.exponential_base,
            jitter=self.config.retry_jitter,
            backoff_strategy=opts.backoff,
        )


def get_data_loader(config: Optional[LoaderConfig] = None,
                    metrics: Optional[MetricsCollector] = None) -> DataLoader:
    """Module-level accessor for the process-wide loader."""
    return DataLoader.get_instance(config, metrics)


def destroy_data_loader() -> None:
    DataLoader.destroy()
