from __future__ import annotations

import logging
import socketserver
from typing import Tuple

from cloudmpd.application.daemon import Daemon
from cloudmpd.application.dispatcher import Dispatcher
from cloudmpd.application.protocol import HELLO, NEWLINE, CloseConnection
from cloudmpd.application.session import ClientSession
from cloudmpd.crosscutting.logging import (
    CorrelationContext, log_client_connected, log_client_disconnected,
)

logger = logging.getLogger(__name__)

ENCODING = "utf-8"


class MPDRequestHandler(socketserver.StreamRequestHandler):
    """One client connection: greeting, then a line-in/response-out loop."""

    server: "MPDServer"

    def handle(self) -> None:
        client = "%s:%s" % self.client_address[:2]
        session = ClientSession(self.server.dispatcher, client)
        metrics = self.server.daemon.metrics

        metrics.connection_opened()
        log_client_connected(logger, client)
        try:
            self._send(HELLO + NEWLINE)
            with CorrelationContext(client=client):
                self._serve(session)
        except (ConnectionError, OSError) as e:
            logger.debug(f"Connection to {client} dropped: {e}")
        finally:
            metrics.connection_closed()
            log_client_disconnected(logger, client, session.commands_seen)

    def _serve(self, session: ClientSession) -> None:
        for raw in self.rfile:
            line = raw.decode(ENCODING, errors="replace").rstrip("\r\n")
            try:
                response = session.feed(line)
            except CloseConnection:
                return
            if response:
                self._send(response)

    def _send(self, text: str) -> None:
        self.wfile.write(text.encode(ENCODING))
        self.wfile.flush()


class MPDServer(socketserver.ThreadingTCPServer):
    """TCP server sharing one Daemon across a thread per connection."""

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, address: Tuple[str, int], daemon: Daemon):
        self.daemon = daemon
        self.dispatcher = Dispatcher(daemon)
        super().__init__(address, MPDRequestHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]
