from __future__ import annotations

import logging
from typing import Callable, List

from .errors import EmptyPlaylist, NotFound, OutOfRange, PermanentFailure, RateLimited, TemporaryFailure
from .ports import Player

logger = logging.getLogger(__name__)


class Playlist:
    """The daemon's play queue: ordered track ids plus a cursor.

    The cursor is -1 until something has played. Entries are only ever
    appended; their index doubles as the MPD song id.
    """

    def __init__(self) -> None:
        self._tracks: List[str] = []
        self.position = -1

    def add_track(self, track_id: str) -> int:
        """Append a track and return its index."""
        self._tracks.append(track_id)
        return self.length() - 1

    def length(self) -> int:
        return len(self._tracks)

    def track_ids(self) -> List[str]:
        return list(self._tracks)

    def track_at_position(self, pos: int) -> str:
        if 0 <= pos < self.length():
            return self._tracks[pos]
        raise OutOfRange(f"no track at position {pos}")

    def track_position(self, track_id: str) -> int:
        """Return the index of the first entry equal to track_id, or -1."""
        for i, queued in enumerate(self._tracks):
            if queued == track_id:
                return i
        return -1

    def current_track(self) -> str:
        if self.length() == 0:
            raise EmptyPlaylist("playlist is empty")
        return self.track_at_position(self.position)

    def set_position(self, pos: int) -> None:
        self.track_at_position(pos)
        self.position = pos

    def play_next(self, stream_url: Callable[[str], str], player: Player) -> bool:
        """Advance to the next entry and hand its stream to the player.

        Fails soft: when there is no next entry or its URL cannot be resolved
        the cursor and the player are left as they were.
        """
        next_pos = self.position + 1
        if next_pos >= self.length():
            return False
        track_id = self._tracks[next_pos]
        try:
            url = stream_url(track_id)
        except (NotFound, RateLimited, TemporaryFailure, PermanentFailure) as e:
            logger.warning(f"Could not resolve stream for {track_id}, staying at {self.position}: {e}")
            return False
        player.play(url)
        self.position = next_pos
        return True

    def render(self) -> str:
        """MPD ``playlist`` listing, one ``<index>:file: <id>`` line per entry."""
        return "".join(f"{i}:file: {track_id}\n" for i, track_id in enumerate(self._tracks))
