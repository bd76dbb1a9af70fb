import socket
import threading

from cloudmpd.application.content import ContentCache
from cloudmpd.application.daemon import Daemon
from cloudmpd.infrastructure.store.sqlite import SqliteContentStore
from cloudmpd.interfaces.server import MPDServer
from cloudmpd.tests.fakes import FakeCatalogue, FakePlayer, make_track


class TestMPDServer:

    def setup_method(self):
        self.store = SqliteContentStore(":memory:")
        catalogue = FakeCatalogue(tracks=[make_track("t1"), make_track("t2")])
        self.daemon = Daemon(ContentCache(catalogue, self.store), FakePlayer())
        self.server = MPDServer(("127.0.0.1", 0), self.daemon)
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()

    def teardown_method(self):
        self.server.shutdown()
        self.server.server_close()
        self.store.close()

    def _connect(self):
        sock = socket.create_connection(("127.0.0.1", self.server.port), timeout=5)
        return sock, sock.makefile("rwb")

    def _exchange(self, stream, line, terminators=(b"OK\n",)):
        stream.write(line.encode("utf-8") + b"\n")
        stream.flush()
        lines = []
        while True:
            reply = stream.readline()
            lines.append(reply)
            if reply in terminators or reply.startswith(b"ACK ") or not reply:
                return b"".join(lines).decode("utf-8")

    def test_greeting_and_ping(self):
        sock, stream = self._connect()
        try:
            assert stream.readline() == b"OK MPD 0.17.0\n"
            assert self._exchange(stream, "ping") == "OK\n"
        finally:
            stream.close()
            sock.close()

    def test_unknown_command_keeps_connection_open(self):
        sock, stream = self._connect()
        try:
            stream.readline()
            assert self._exchange(stream, "frobnicate") == 'ACK [5@0] {} unknown command "frobnicate"\n'
            assert self._exchange(stream, "ping") == "OK\n"
        finally:
            stream.close()
            sock.close()

    def test_connections_share_the_playlist(self):
        first, first_stream = self._connect()
        second, second_stream = self._connect()
        try:
            first_stream.readline()
            second_stream.readline()
            assert self._exchange(first_stream, "add t1") == "OK\n"
            response = self._exchange(second_stream, "status")
            assert "playlistlength: 1\n" in response
        finally:
            for stream, sock in ((first_stream, first), (second_stream, second)):
                stream.close()
                sock.close()

    def test_close_ends_connection(self):
        sock, stream = self._connect()
        try:
            stream.readline()
            stream.write(b"close\n")
            stream.flush()
            assert stream.readline() == b""
        finally:
            stream.close()
            sock.close()

    def test_connection_metrics(self):
        sock, stream = self._connect()
        stream.readline()
        self._exchange(stream, "ping")
        stream.write(b"close\n")
        stream.flush()
        stream.readline()
        stream.close()
        sock.close()
        snapshot = self.daemon.metrics.snapshot()
        assert snapshot.connections_total == 1
        assert snapshot.commands_total >= 1
