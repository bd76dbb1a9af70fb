from __future__ import annotations

from typing import Callable, List, Optional, Protocol

from .entities import Album, Artist, Track


class CatalogueClient(Protocol):
    """Port defining the remote catalogue and streaming capability.

    Implementations map provider-specific records into domain entities and
    raise domain errors (NotFound, RateLimited, TemporaryFailure).
    """

    def search_tracks(self, query: str, limit: int) -> List[Track]:
        """Return up to limit tracks matching query, in provider order."""

    def search_albums(self, query: str, limit: int) -> List[Album]:
        """Return up to limit albums matching query, in provider order."""

    def fetch_track(self, track_id: str) -> Track:
        """Return a single track by id."""

    def fetch_album(self, album_id: str, include_tracks: bool) -> Album:
        """Return a single album, with its tracks when include_tracks is set."""

    def list_library(self) -> List[Track]:
        """Return the tracks saved in the user's library."""

    def stream_url(self, track_id: str, device_id: Optional[str] = None) -> str:
        """Return a short-lived URL the player can stream the track from."""


class Player(Protocol):
    """Port for the audio playback engine."""

    def play(self, url: str) -> None:
        """Start playing url, replacing whatever is playing."""

    def pause(self) -> None:
        """Pause if currently playing."""

    def stop(self) -> None:
        """Stop playback."""

    def state(self) -> str:
        """Return "play" or "stop"."""

    def position(self) -> Optional[float]:
        """Return elapsed seconds of the current stream, None when unknown."""

    def set_end_of_stream_callback(self, callback: Callable[[], None]) -> None:
        """Register the callable invoked when a stream finishes on its own."""


class ContentStore(Protocol):
    """Port for the persistent key-indexed catalogue store."""

    def upsert_track(self, track: Track) -> None:
        ...

    def upsert_album(self, album: Album) -> None:
        ...

    def get_track(self, track_id: str) -> Optional[Track]:
        ...

    def albums_by_artist(self, artist: str) -> List[Album]:
        ...

    def artists_matching(self, substring: str) -> List[Artist]:
        ...

    def tracks_by_artist(self, artist: str, album_substring: str) -> List[Track]:
        ...

    def album_id_by_name(self, name: str) -> Optional[str]:
        ...

    def close(self) -> None:
        ...
