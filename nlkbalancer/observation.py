"""Watching of cluster services, endpoint slices and nodes for changes."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Protocol

from nlkbalancer.core import Event, EventType
from nlkbalancer.models import EndpointSlice, Service

logger = logging.getLogger(__name__)

SERVICE_ANNOTATION_KEY = "nginx.com/nginxaas"


class Synchronizer(Protocol):
    """The part of the synchronizer the watcher feeds events into."""

    def add_event(self, event: Event) -> None: ...

    def shut_down(self) -> None: ...


class Informer(Protocol):
    """A source of add, update and delete notifications for one kind of object."""

    def add_event_handler(
        self,
        on_add: Callable[[Any], None],
        on_update: Callable[[Any, Any], None],
        on_delete: Callable[[Any], None],
    ) -> Any: ...


class Register:
    """The services the user has configured for balancing, by namespace and name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._services: dict[tuple[str, str], Service] = {}

    def add_or_update_service(self, service: Service) -> None:
        """Add the service, or replace the one held under the same key."""
        with self._lock:
            self._services[(service.namespace, service.name)] = service

    def remove_service(self, service: Service) -> None:
        """Remove the service if it is held."""
        with self._lock:
            self._services.pop((service.namespace, service.name), None)

    def get_service(self, namespace: str, service_name: str) -> Service | None:
        """The service held under the given namespace and name, or None."""
        with self._lock:
            return self._services.get((namespace, service_name))

    def list_services(self) -> list[Service]:
        """All services held."""
        with self._lock:
            return list(self._services.values())


class Watcher:
    """Turns changes to annotated services, and to their endpoint slices and
    the cluster's nodes, into events for the synchronizer."""

    def __init__(
        self,
        service_annotation: str,
        synchronizer: Synchronizer,
        service_informer: Informer | None,
        endpoint_slice_informer: Informer | None,
        node_informer: Informer | None,
    ) -> None:
        if service_informer is None:
            raise ValueError("service informer cannot be nil")
        if endpoint_slice_informer is None:
            raise ValueError("endpoint slice informer cannot be nil")
        if node_informer is None:
            raise ValueError("node informer cannot be nil")

        self.service_annotation = service_annotation
        self.synchronizer = synchronizer
        self.service_informer = service_informer
        self.endpoint_slice_informer = endpoint_slice_informer
        self.node_informer = node_informer
        self.register = Register()

        self._register_handlers()

    def _register_handlers(self) -> None:
        logger.debug("Watcher::initializeEventListeners")
        registrations = (
            ("service", self.service_informer,
             self.on_service_added, self.on_service_updated, self.on_service_deleted),
            ("endpoint slice", self.endpoint_slice_informer,
             self.on_endpoint_slice_added, self.on_endpoint_slice_updated,
             self.on_endpoint_slice_deleted),
            ("node", self.node_informer,
             self.on_node_added, self.on_node_updated, self.on_node_deleted),
        )
        for kind, informer, on_add, on_update, on_delete in registrations:
            try:
                informer.add_event_handler(on_add, on_update, on_delete)
            except Exception as err:
                raise RuntimeError(
                    f"error occurred adding {kind} event handlers: {err}"
                ) from err

    def run(self, stop_event: threading.Event) -> None:
        """Block until stop_event is set, then shut the synchronizer down."""
        if self.service_informer is None:
            raise RuntimeError("servicesInformer is nil")
        logger.debug("Watcher::Watch")
        try:
            stop_event.wait()
        finally:
            self.synchronizer.shut_down()

    def is_desired_service(self, service: Service) -> bool:
        """Whether the service carries the configured annotation value."""
        annotation = service.annotations.get(SERVICE_ANNOTATION_KEY)
        if annotation is None:
            return False
        return annotation == self.service_annotation

    def _emit(self, event_type: EventType, service: Service) -> None:
        self.synchronizer.add_event(Event(event_type, service))

    def _update_all_registered(self) -> None:
        for service in self.register.list_services():
            self._emit(EventType.UPDATED, service)

    def on_service_added(self, obj: Service) -> None:
        if not self.is_desired_service(obj):
            return
        self.register.add_or_update_service(obj)
        self._emit(EventType.CREATED, obj)

    def on_service_updated(self, previous: Service, updated: Service) -> None:
        if self.is_desired_service(previous) and not self.is_desired_service(updated):
            logger.info("Watcher::service annotation removed serviceName=%s", updated.name)
            self.register.remove_service(previous)
            self._emit(EventType.DELETED, previous)
            return
        if not self.is_desired_service(updated):
            return
        self.register.add_or_update_service(updated)
        self._emit(EventType.UPDATED, updated)

    def on_service_deleted(self, obj: Service) -> None:
        if not self.is_desired_service(obj):
            return
        self.register.remove_service(obj)
        self._emit(EventType.DELETED, obj)

    def _registered_service_of(self, obj: Any) -> Service | None:
        if not isinstance(obj, EndpointSlice):
            logger.error("could not convert event object to EndpointSlice obj=%r", obj)
            return None
        return self.register.get_service(obj.namespace, obj.service_name)

    def on_endpoint_slice_added(self, obj: Any) -> None:
        logger.debug("received endpoint slice add event")
        service = self._registered_service_of(obj)
        if service is not None:
            self._emit(EventType.UPDATED, service)

    def on_endpoint_slice_updated(self, previous: Any, updated: Any) -> None:
        logger.debug("received endpoint slice update event")
        service = self._registered_service_of(updated)
        if service is not None:
            self._emit(EventType.UPDATED, service)

    def on_endpoint_slice_deleted(self, obj: Any) -> None:
        logger.debug("received endpoint slice delete event")
        service = self._registered_service_of(obj)
        if service is not None:
            self._emit(EventType.DELETED, service)

    def on_node_added(self, obj: Any) -> None:
        logger.debug("received node add event")
        self._update_all_registered()

    def on_node_updated(self, previous: Any, updated: Any) -> None:
        logger.debug("received node update event")
        self._update_all_registered()

    def on_node_deleted(self, obj: Any) -> None:
        logger.debug("received node delete event")
        self._update_all_registered()