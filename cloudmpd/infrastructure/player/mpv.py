"""
mpv playback engine driven over its JSON IPC socket
"""

from __future__ import annotations

import itertools
import json
import logging
import os
import socket
import subprocess
import tempfile
import threading
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

SOCKET_TIMEOUT = 2.0
START_TIMEOUT = 5.0


class PlayerError(Exception):
    """mpv could not be started or did not answer."""


class MpvPlayer:
    """Player port implementation around one long-lived ``mpv --idle`` process.

    Commands go over short-lived IPC connections; a background thread keeps a
    separate connection open and watches for ``end-file`` events so the daemon
    can advance the playlist.
    """

    def __init__(self, mpv_path: str = "mpv", socket_path: Optional[str] = None):
        self.mpv_path = mpv_path
        self.socket_path = socket_path or os.path.join(
            tempfile.gettempdir(), f"cloudmpd-mpv-{os.getpid()}.sock")
        self._process: Optional[subprocess.Popen] = None
        self._events_sock: Optional[socket.socket] = None
        self._reader: Optional[threading.Thread] = None
        self._on_end_of_stream: Optional[Callable[[], None]] = None
        self._state = "stop"
        self._paused = False
        self._state_lock = threading.Lock()
        self._request_ids = itertools.count(1)

    # Lifecycle

    def start(self) -> None:
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

        cmd = [
            self.mpv_path,
            "--idle=yes",
            "--no-video",
            "--no-terminal",
            f"--input-ipc-server={self.socket_path}",
        ]
        logger.info(f"Starting mpv with socket {self.socket_path}")
        try:
            self._process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
            )
        except OSError as e:
            raise PlayerError(f"Failed to start mpv: {e}")

        deadline = time.time() + START_TIMEOUT
        while not os.path.exists(self.socket_path):
            if time.time() > deadline or self._process.poll() is not None:
                self._process.kill()
                raise PlayerError(f"mpv did not open {self.socket_path} within {START_TIMEOUT}s")
            time.sleep(0.1)

        self._events_sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self._events_sock.connect(self.socket_path)
        self._reader = threading.Thread(target=self._read_events, name="mpv-events", daemon=True)
        self._reader.start()

    def close(self) -> None:
        if self._events_sock is not None:
            try:
                self._events_sock.close()
            except OSError:
                pass
            self._events_sock = None
        if self._process is not None:
            self._process.kill()
            try:
                self._process.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                logger.warning("mpv did not exit after kill")
            self._process = None
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

    # IPC

    def _command(self, *args: Any) -> Any:
        """Send one command and return its ``data`` field."""
        request_id = next(self._request_ids)
        payload = json.dumps({"command": list(args), "request_id": request_id}) + "\n"
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
                sock.settimeout(SOCKET_TIMEOUT)
                sock.connect(self.socket_path)
                sock.sendall(payload.encode("utf-8"))
                reader = sock.makefile("r", encoding="utf-8")
                for line in reader:
                    reply = json.loads(line)
                    if reply.get("request_id") == request_id:
                        break
                else:
                    raise PlayerError(f"mpv closed the connection during {args[0]}")
        except (OSError, ValueError) as e:
            raise PlayerError(f"mpv command {args[0]} failed: {e}")

        if reply.get("error") != "success":
            raise PlayerError(f"mpv rejected {args[0]}: {reply.get('error')}")
        return reply.get("data")

    def _read_events(self) -> None:
        sock = self._events_sock
        if sock is None:
            return
        try:
            for line in sock.makefile("r", encoding="utf-8"):
                try:
                    message = json.loads(line)
                except ValueError:
                    logger.debug(f"Ignoring malformed mpv message: {line!r}")
                    continue
                if "event" in message:
                    self._handle_event(message)
        except OSError as e:
            logger.debug(f"mpv event stream closed: {e}")

    def _handle_event(self, message: dict) -> None:
        if message.get("event") != "end-file":
            return
        # "stop" means we replaced or stopped the file ourselves
        if message.get("reason") != "eof":
            return
        with self._state_lock:
            self._state = "stop"
            self._paused = False
        callback = self._on_end_of_stream
        if callback is not None:
            try:
                callback()
            except Exception:
                logger.exception("End-of-stream handler failed")

    # Player port

    def set_end_of_stream_callback(self, callback: Callable[[], None]) -> None:
        self._on_end_of_stream = callback

    def play(self, url: str) -> None:
        self._command("loadfile", url, "replace")
        self._command("set_property", "pause", False)
        with self._state_lock:
            self._state = "play"
            self._paused = False

    def pause(self) -> None:
        with self._state_lock:
            if self._state != "play":
                return
            self._paused = not self._paused
            paused = self._paused
        self._command("set_property", "pause", paused)

    def stop(self) -> None:
        self._command("stop")
        with self._state_lock:
            self._state = "stop"
            self._paused = False

    def state(self) -> str:
        with self._state_lock:
            return "play" if self._state == "play" and not self._paused else "stop"

    def position(self) -> Optional[float]:
        try:
            value = self._command("get_property", "time-pos")
        except PlayerError as e:
            logger.debug(f"time-pos unavailable: {e}")
            return None
        return float(value) if value is not None else None
