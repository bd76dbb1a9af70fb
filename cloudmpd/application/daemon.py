from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from cloudmpd.application.command_list import CommandList
from cloudmpd.application.content import ContentCache
from cloudmpd.crosscutting.metrics import DaemonMetrics
from cloudmpd.domain.playlist import Playlist
from cloudmpd.domain.ports import Player

logger = logging.getLogger(__name__)


class Daemon:
    """State shared by every client connection.

    There is one playlist, one command list and one player per process.
    ``lock`` guards the playlist and the command list. Single commands take it
    around playlist access only, so a slow catalogue call in one connection
    does not stall the others; a command list holds it for its whole replay.
    """

    def __init__(self,
                 content: ContentCache,
                 player: Player,
                 metrics: Optional[DaemonMetrics] = None):
        self.content = content
        self.player = player
        self.playlist = Playlist()
        self.command_list = CommandList()
        self.metrics = metrics or DaemonMetrics()
        self.lock = threading.RLock()
        self.start_time = time.time()
        player.set_end_of_stream_callback(self.on_end_of_stream)

    def uptime(self) -> int:
        return int(time.time() - self.start_time)

    def on_end_of_stream(self) -> None:
        """Called from the player's thread when a stream finishes by itself."""
        with self.lock:
            advanced = self.playlist.play_next(self.content.track_stream_url, self.player)
            position = self.playlist.position
        if advanced:
            logger.info(f"Autoplay advanced to position {position}")
        else:
            logger.info(f"Autoplay stopped at position {position}")
