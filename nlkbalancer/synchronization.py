"""Synchronization of service events into NGINX Plus upstream updates."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar

import requests

from nlkbalancer.application import BorderClient, BorderClientError, new_border_client
from nlkbalancer.communication import new_http_client
from nlkbalancer.core import Event, EventType, ServerUpdateEvent
from nlkbalancer.models import Service

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)

_HTTP_NOT_FOUND = 404


@dataclass(frozen=True)
class ServiceKey:
    """Identifies a service by name and namespace."""

    name: str
    namespace: str


class ServiceNotFoundError(LookupError):
    """Raised by a service lister when the service does not exist."""

    def __init__(self, namespace: str, name: str) -> None:
        super().__init__(f"service {namespace}/{name} not found")
        self.namespace = namespace
        self.name = name


class StatusError(Exception):
    """An NGINX Plus API error that carries an HTTP status and an error code."""

    def __init__(self, status: int, code: str = "", message: str = "") -> None:
        super().__init__(message or f"status {status} {code}".strip())
        self.status = status
        self.code = code


class Translator(Protocol):
    """Turns a service event into server update events."""

    def translate(self, event: Event) -> list[ServerUpdateEvent]: ...


class ServiceLister(Protocol):
    """Looks up the current state of a service; raises ServiceNotFoundError."""

    def get(self, namespace: str, name: str) -> Service: ...


NginxClientFactory = Callable[[str, requests.Session], Any]


class RateLimitingQueue(Generic[T]):
    """A work queue with per-item exponential back-off.

    An item is held at most once while pending; an item added while it is
    being processed is handed out again once it is marked done. The length
    counts every distinct pending item, including those still waiting out
    their back-off.
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0, name: str = "") -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.name = name
        self._cond = threading.Condition()
        self._queue: deque[T] = deque()
        self._dirty: set[T] = set()
        self._processing: set[T] = set()
        self._waiting: dict[T, float] = {}
        self._heap: list[tuple[float, int, T]] = []
        self._counter = itertools.count()
        self._failures: dict[T, int] = {}
        self._shutting_down = False

    def add_rate_limited(self, item: T) -> None:
        """Add the item once its back-off, which doubles on each call, has passed."""
        with self._cond:
            delay = self._next_delay(item)
            if self._shutting_down:
                return
            self._add_after(item, delay)

    def get(self) -> T | None:
        """Block until an item is ready and return it; None once shut down."""
        with self._cond:
            while True:
                self._promote_ready(time.monotonic())
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item
                if self._shutting_down:
                    return None
                timeout = None
                if self._heap:
                    timeout = max(0.0, self._heap[0][0] - time.monotonic())
                self._cond.wait(timeout)

    def done(self, item: T) -> None:
        """Mark the item as processed, re-queueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
            self._cond.notify_all()

    def forget(self, item: T) -> None:
        """Reset the item's back-off."""
        with self._cond:
            self._failures.pop(item, None)

    def shut_down_with_drain(self) -> None:
        """Stop accepting items and wait until items in progress are done."""
        with self._cond:
            self._shutting_down = True
            self._waiting.clear()
            self._heap.clear()
            self._cond.notify_all()
            while self._processing:
                self._cond.wait()

    def __len__(self) -> int:
        with self._cond:
            return len(self._dirty.union(self._waiting))

    def _next_delay(self, item: T) -> float:
        failures = self._failures.get(item, 0)
        self._failures[item] = failures + 1
        if failures > 62:
            return self.max_delay
        return min(self.base_delay * (2**failures), self.max_delay)

    def _add_after(self, item: T, delay: float) -> None:
        if delay <= 0:
            self._add(item)
            return
        ready = time.monotonic() + delay
        current = self._waiting.get(item)
        if current is not None and current <= ready:
            return
        self._waiting[item] = ready
        heapq.heappush(self._heap, (ready, next(self._counter), item))
        self._cond.notify_all()

    def _promote_ready(self, now: float) -> None:
        while self._heap and self._heap[0][0] <= now:
            ready, _, item = heapq.heappop(self._heap)
            if self._waiting.get(item) != ready:
                continue
            del self._waiting[item]
            self._add(item)

    def _add(self, item: T) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()


@dataclass
class _CachedService:
    service: Service
    # When the service was removed from monitoring; None while still monitored.
    removed_at: float | None = None


class _ServiceCache:
    """Last known definitions of monitored services, kept for clean-up after deletion."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._store: dict[ServiceKey, _CachedService] = {}

    def get(self, key: ServiceKey) -> _CachedService | None:
        with self._lock:
            return self._store.get(key)

    def add(self, key: ServiceKey, entry: _CachedService) -> None:
        with self._lock:
            self._store[key] = entry

    def delete(self, key: ServiceKey) -> None:
        with self._lock:
            self._store.pop(key, None)


def _find_status_error(err: BaseException) -> StatusError | None:
    seen: set[int] = set()
    current: BaseException | None = err
    while current is not None and id(current) not in seen:
        if isinstance(current, StatusError):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


class Synchronizer:
    """Keeps the border servers' upstreams in step with the cluster's services."""

    def __init__(
        self,
        nginx_plus_hosts: Iterable[str],
        event_queue: RateLimitingQueue[ServiceKey],
        translator: Translator,
        service_lister: ServiceLister,
        nginx_client_factory: NginxClientFactory,
        threads: int = 1,
        api_key: str = "",
        skip_verify_tls: bool = False,
    ) -> None:
        self.nginx_plus_hosts = list(nginx_plus_hosts)
        self.event_queue = event_queue
        self.translator = translator
        self.service_lister = service_lister
        self.nginx_client_factory = nginx_client_factory
        self.threads = threads
        self.api_key = api_key
        self.skip_verify_tls = skip_verify_tls
        self._cache = _ServiceCache()

    def add_event(self, event: Event) -> None:
        """Queue the event's service; does nothing when no hosts are configured."""
        logger.debug("Synchronizer::AddEvent")
        if not self.nginx_plus_hosts:
            logger.warning("No Nginx Plus hosts were specified. Skipping synchronization.")
            return

        service = event.service
        key = ServiceKey(name=service.name, namespace=service.namespace)
        removed_at = time.time() if event.type == EventType.DELETED else None
        self._cache.add(key, _CachedService(service, removed_at))
        self.event_queue.add_rate_limited(key)

    def run(self, stop_event: threading.Event) -> None:
        """Start the worker threads and block until stop_event is set."""
        logger.debug("Synchronizer::Run")

        def worker() -> None:
            logger.debug("Synchronizer::worker")
            while not stop_event.is_set():
                if not self.handle_next_service_event():
                    break

        for index in range(self.threads):
            thread = threading.Thread(
                target=worker, name=f"synchronizer-worker-{index}", daemon=True
            )
            thread.start()

        stop_event.wait()

    def shut_down(self) -> None:
        """Shut down the event queue, letting work in progress finish."""
        logger.debug("Synchronizer::ShutDown")
        self.event_queue.shut_down_with_drain()

    def fan_out_event_to_hosts(self, events: Iterable[ServerUpdateEvent]) -> list[ServerUpdateEvent]:
        """One copy of every event for each configured NGINX Plus host."""
        logger.debug("Synchronizer::fanOutEventToHosts")
        events = list(events)
        return [event.with_host(host) for host in self.nginx_plus_hosts for event in events]

    def handle_service_event(self, key: ServiceKey) -> None:
        """Translate the service's latest state and apply it to every host."""
        logger.debug("Synchronizer::handleServiceEvent service=%s", key)

        cached = self._cache.get(key)
        try:
            k8s_service = self.service_lister.get(key.namespace, key.name)
        except ServiceNotFoundError:
            if cached is None:
                logger.warning(
                    "Synchronizer::handleServiceEvent: no information could be gained about service %s",
                    key,
                )
                return
            event = Event(EventType.DELETED, cached.service)
        else:
            if cached is not None and cached.removed_at is not None:
                event = Event(EventType.DELETED, cached.service)
            else:
                event = Event(EventType.UPDATED, k8s_service)

        events = self.translator.translate(event)
        if not events:
            logger.warning("Synchronizer::handleServiceEvent: no events to process")
            return

        errors: list[Exception] = []
        for update in self.fan_out_event_to_hosts(events):
            try:
                if event.type in (EventType.CREATED, EventType.UPDATED):
                    self._handle_created_updated_event(update)
                elif event.type == EventType.DELETED:
                    self._handle_deleted_event(update)
                else:
                    logger.warning(
                        "Synchronizer::handleServiceEvent: unknown event type %s", event.type
                    )
            except Exception as err:
                errors.append(err)

        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise BorderClientError("\n".join(str(err) for err in errors)) from errors[0]

        if event.type == EventType.DELETED:
            self._cache.delete(ServiceKey(event.service.name, event.service.namespace))

        logger.debug(
            "Synchronizer::handleServiceEvent: successfully handled the service change service=%s",
            key,
        )

    def handle_next_service_event(self) -> bool:
        """Process one queued service; False once the queue has shut down."""
        logger.debug("Synchronizer::handleNextServiceEvent")
        key = self.event_queue.get()
        if key is None:
            return False
        try:
            error: Exception | None = None
            try:
                self.handle_service_event(key)
            except Exception as err:
                error = err
            self._with_retry(error, key)
        finally:
            self.event_queue.done(key)
        return True

    def _with_retry(self, error: Exception | None, key: ServiceKey) -> None:
        logger.debug("Synchronizer::withRetry")
        if error is not None:
            self.event_queue.add_rate_limited(key)
            logger.info(
                "Synchronizer::withRetry: requeued service update service=%s error=%s", key, error
            )
        else:
            self.event_queue.forget(key)

    def _build_border_client(self, event: ServerUpdateEvent) -> BorderClient:
        logger.debug("Synchronizer::buildBorderClient")
        http_client = new_http_client(self.api_key, self.skip_verify_tls)
        nginx_client = self.nginx_client_factory(event.nginx_host, http_client)
        return new_border_client(event.client_type, nginx_client)

    def _handle_created_updated_event(self, event: ServerUpdateEvent) -> None:
        logger.debug("Synchronizer::handleCreatedUpdatedEvent")
        try:
            border_client = self._build_border_client(event)
        except Exception as err:
            raise BorderClientError(f"error occurred creating the border client: {err}") from err
        try:
            border_client.update(event)
        except Exception as err:
            raise BorderClientError(
                f"error occurred updating the {event.client_type} upstream servers: {err}"
            ) from err

    def _handle_deleted_event(self, event: ServerUpdateEvent) -> None:
        logger.debug("Synchronizer::handleDeletedEvent")
        try:
            border_client = self._build_border_client(event)
        except Exception as err:
            raise BorderClientError(f"error occurred creating the border client: {err}") from err
        try:
            border_client.update(event)
        except Exception as err:
            status_error = _find_status_error(err)
            if status_error is not None and status_error.status == _HTTP_NOT_FOUND:
                # The upstream is already gone from the NGINX configuration.
                return
            raise BorderClientError(
                f"error occurred deleting the {event.client_type} upstream servers: {err}"
            ) from err