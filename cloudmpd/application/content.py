from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from cloudmpd.application.lru import LRUCache
from cloudmpd.crosscutting.metrics import DaemonMetrics
from cloudmpd.domain.entities import Album, Artist, Track
from cloudmpd.domain.errors import NotFound, PermanentFailure, PersistenceFailure, RateLimited, TemporaryFailure
from cloudmpd.domain.ports import CatalogueClient, ContentStore

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 1000
DEFAULT_SEARCH_LIMIT = 200


class ContentCache:
    """Decides, per lookup, between the in-memory LRU, the local store and the catalogue.

    The store is the system of record; the LRU only accelerates id lookups.
    Every remote result is written to the store as a side effect, and a failed
    write never fails the lookup that produced it.
    """

    def __init__(self,
                 client: CatalogueClient,
                 store: ContentStore,
                 cache_size: int = DEFAULT_CACHE_SIZE,
                 search_limit: int = DEFAULT_SEARCH_LIMIT,
                 device_id: Optional[str] = None,
                 metrics: Optional[DaemonMetrics] = None):
        self._client = client
        self._store = store
        self._memory = LRUCache(cache_size)
        self._search_limit = search_limit
        self._device_id = device_id
        self._metrics = metrics or DaemonMetrics()

    # Side effects

    def _remember_track(self, track: Track, *aliases: str) -> None:
        for key in {track.file_id, *aliases}:
            if key:
                self._memory.add(("track", key), track)

    def _persist_track(self, track: Track) -> None:
        try:
            self._store.upsert_track(track)
        except PersistenceFailure as e:
            self._metrics.record_persist_failure()
            logger.warning(f"Failed to persist track {track.file_id}: {e}")

    def _persist_album(self, album: Album) -> None:
        try:
            self._store.upsert_album(album)
        except PersistenceFailure as e:
            self._metrics.record_persist_failure()
            logger.warning(f"Failed to persist album {album.id}: {e}")

    def _record_tracks(self, tracks: Iterable[Track]) -> List[Track]:
        result = []
        for track in tracks:
            self._persist_track(track)
            self._remember_track(track)
            result.append(track)
        return result

    def _remote(self, call, *args):
        self._metrics.record_remote_call()
        try:
            return call(*args)
        except (NotFound, PermanentFailure, RateLimited, TemporaryFailure):
            self._metrics.record_remote_failure()
            raise

    # Lookups

    def find_track(self, track_id: str) -> Track:
        """Resolve a track id: memory, then store, then the catalogue."""
        cached = self._memory.get(("track", track_id))
        if cached is not None:
            self._metrics.record_memory_hit()
            return cached

        try:
            stored = self._store.get_track(track_id)
        except PersistenceFailure as e:
            logger.warning(f"Store lookup failed for track {track_id}, asking catalogue: {e}")
            stored = None
        if stored is not None:
            self._metrics.record_store_hit()
            self._remember_track(stored, track_id)
            return stored

        track = self._remote(self._client.fetch_track, track_id)
        logger.debug(f"Fetched track {track_id} from catalogue")
        self._persist_track(track)
        self._remember_track(track, track_id)
        return track

    def cached_track(self, track_id: str) -> Optional[Track]:
        """Memory-only peek; never touches the store or the network."""
        return self._memory.get(("track", track_id))

    def find_tracks(self, query: str) -> List[Track]:
        """Search the catalogue; search results are never served from cache."""
        tracks = self._remote(self._client.search_tracks, query, self._search_limit)
        return self._record_tracks(tracks)

    def find_album(self, album_id: str, include_tracks: bool) -> Album:
        album = self._remote(self._client.fetch_album, album_id, include_tracks)
        self._persist_album(album)
        self._memory.add(("album", album.id or album_id), album)
        for track in album.tracks:
            self._remember_track(track)
        return album

    def find_albums(self, query: str) -> List[Album]:
        albums = self._remote(self._client.search_albums, query, self._search_limit)
        for album in albums:
            self._persist_album(album)
            self._memory.add(("album", album.id), album)
        return list(albums)

    def user_tracks(self) -> List[Track]:
        tracks = self._remote(self._client.list_library)
        return self._record_tracks(tracks)

    def find_album_tracks_by_name(self, name: str) -> List[Track]:
        """Tracks of the album recorded locally under exactly this name."""
        try:
            album_id = self._store.album_id_by_name(name)
        except PersistenceFailure as e:
            logger.warning(f"Store lookup failed for album '{name}': {e}")
            return []
        if not album_id:
            return []
        album = self.find_album(album_id, include_tracks=True)
        return self._record_tracks(album.tracks)

    # Store-only projections; best effort, empty on failure.

    def list_artists(self, query: str) -> List[Artist]:
        try:
            return self._store.artists_matching(query)
        except PersistenceFailure as e:
            logger.warning(f"Artist listing failed for '{query}': {e}")
            return []

    def find_albums_by_artist_name(self, artist: str) -> List[Album]:
        try:
            return self._store.albums_by_artist(artist)
        except PersistenceFailure as e:
            logger.warning(f"Album listing failed for artist '{artist}': {e}")
            return []

    def find_tracks_by_artist(self, artist: str, album: str = "") -> List[Track]:
        try:
            return self._store.tracks_by_artist(artist, album)
        except PersistenceFailure as e:
            logger.warning(f"Track listing failed for artist '{artist}': {e}")
            return []

    def track_stream_url(self, track_id: str) -> str:
        """Always remote: stream URLs are short-lived and never cached."""
        return self._remote(self._client.stream_url, track_id, self._device_id)
