"""Liveness, readiness and startup probes served over HTTP."""

from __future__ import annotations

import logging
import socketserver
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler
from typing import NamedTuple, Protocol

logger = logging.getLogger(__name__)

OK = "OK"
"""Body returned when a check passes."""

SERVICE_NOT_AVAILABLE = "Service Not Available"
"""Body returned when a check fails."""

LISTEN_PORT = 51031
"""Port on which the health server listens by default."""

READ_TIMEOUT = 2.0


class Check(Protocol):
    """A single health check."""

    def check(self) -> bool: ...


class LiveCheck:
    """Check behind the "livez" endpoint."""

    def check(self) -> bool:
        return True


class ReadyCheck:
    """Check behind the "readyz" endpoint."""

    def check(self) -> bool:
        return True


class StartupCheck:
    """Check behind the "startupz" endpoint."""

    def check(self) -> bool:
        return True


class ProbeResponse(NamedTuple):
    """Status and body written back for a probe."""

    status: HTTPStatus
    body: str


class _ProbeServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True
    health: HealthServer


class _ProbeHandler(BaseHTTPRequestHandler):
    timeout = READ_TIMEOUT
    server: _ProbeServer

    def do_GET(self) -> None:
        health = self.server.health
        routes = {
            "/livez": health.handle_live,
            "/readyz": health.handle_ready,
            "/startupz": health.handle_startup,
        }
        path = self.path.split("?", 1)[0]
        handler = routes.get(path)
        if handler is None:
            response = ProbeResponse(HTTPStatus.NOT_FOUND, "404 page not found\n")
        else:
            response = handler()

        payload = response.body.encode("utf-8")
        self.send_response(response.status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        try:
            self.wfile.write(payload)
        except OSError as err:
            logger.error("%s", err)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("probe request: " + format, *args)


class HealthServer:
    """Serves the endpoints for the cluster's health probes."""

    def __init__(self, port: int = LISTEN_PORT) -> None:
        self.port = port
        self.live_check = LiveCheck()
        self.ready_check = ReadyCheck()
        self.startup_check = StartupCheck()
        self._server: _ProbeServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def bound_port(self) -> int | None:
        """The port actually listened on, or None when not running."""
        if self._server is None:
            return None
        return self._server.server_address[1]

    def start(self) -> None:
        """Start listening in a background thread; a failure to listen is logged."""
        logger.debug("Starting probe listener port=%d", self.port)
        try:
            server = _ProbeServer(("", self.port), _ProbeHandler)
        except OSError as err:
            logger.error("failed to listen error=%s", err)
            return

        server.health = self
        self._server = server
        self._thread = threading.Thread(
            target=self._serve, name="probe-listener", daemon=True
        )
        self._thread.start()
        logger.info("Started probe listener address=%s", server.server_address)

    def _serve(self) -> None:
        server = self._server
        if server is None:
            return
        try:
            server.serve_forever()
        except Exception as err:
            logger.error(
                "unable to start probe listener address=%s error=%s",
                server.server_address, err,
            )

    def stop(self) -> None:
        """Shut the listener down."""
        server = self._server
        if server is None:
            return
        try:
            server.shutdown()
            server.server_close()
        except OSError as err:
            logger.error(
                "unable to stop probe listener address=%s error=%s",
                server.server_address, err,
            )
        if self._thread is not None:
            self._thread.join()
        self._server = None
        self._thread = None

    def handle_live(self) -> ProbeResponse:
        """Response for the "livez" endpoint."""
        return self.handle_probe(self.live_check)

    def handle_ready(self) -> ProbeResponse:
        """Response for the "readyz" endpoint."""
        return self.handle_probe(self.ready_check)

    def handle_startup(self) -> ProbeResponse:
        """Response for the "startupz" endpoint."""
        return self.handle_probe(self.startup_check)

    def handle_probe(self, check: Check) -> ProbeResponse:
        """Run the check and build the matching response."""
        if check.check():
            return ProbeResponse(HTTPStatus.OK, OK)
        return ProbeResponse(HTTPStatus.SERVICE_UNAVAILABLE, SERVICE_NOT_AVAILABLE)