import logging
from typing import Any, List, Optional

from cloudmpd.domain.entities import Album, Track
from cloudmpd.domain.errors import NotFound, PermanentFailure, RateLimited, TemporaryFailure
from cloudmpd.domain.ports import CatalogueClient

logger = logging.getLogger(__name__)

PREFERRED_CODEC = 'mp3'


def _artist_names(item: Any) -> str:
    names = []
    for artist in getattr(item, 'artists', None) or []:
        name = getattr(artist, 'name', None)
        if not name and isinstance(artist, dict):
            name = artist.get('name')
        if name:
            names.append(name)
    return ', '.join(names)


def yandex_track_to_domain(track: Any) -> Track:
    """Map a yandex_music Track (or TrackShort wrapper) onto the domain Track."""
    base = track
    # TrackShort wraps the full track
    inner = getattr(track, 'track', None)
    if inner is not None and not getattr(track, 'title', None):
        base = inner

    albums = getattr(base, 'albums', None) or []
    first_album = albums[0] if albums else None
    album_title = getattr(first_album, 'title', None) if first_album is not None else None
    album_id = getattr(first_album, 'id', None) if first_album is not None else None

    duration_ms = getattr(base, 'duration_ms', None) or 0
    real_id = getattr(base, 'real_id', None)
    track_id = getattr(base, 'id', None)

    return Track(
        id=str(track_id) if track_id is not None else '',
        nid=str(real_id) if real_id is not None else '',
        title=getattr(base, 'title', None) or '',
        album=album_title or '',
        artist=_artist_names(base),
        album_id=str(album_id) if album_id is not None else '',
        duration_ms=int(duration_ms),
    )


def yandex_album_to_domain(album: Any, include_tracks: bool = False) -> Album:
    """Map a yandex_music Album onto the domain Album; tracks come from its volumes."""
    tracks = ()
    if include_tracks:
        volumes = getattr(album, 'volumes', None) or []
        tracks = tuple(yandex_track_to_domain(t) for volume in volumes for t in volume)
    year = getattr(album, 'year', None)
    return Album(
        id=str(album.id),
        name=getattr(album, 'title', None) or '',
        artist=_artist_names(album),
        year=str(year) if year else None,
        tracks=tracks,
    )


def _translate(error: Exception, what: str) -> Exception:
    text = str(error)
    if "429" in text or "Too many requests" in text:
        return RateLimited(retry_after_ms=1000)
    if "404" in text or "not found" in text.lower():
        return NotFound(f"{what} not found: {error}")
    if "401" in text or "Unauthorized" in text:
        return PermanentFailure(f"{what}: authorization rejected: {error}")
    return TemporaryFailure(f"Failed to get {what}: {error}")


class YandexCatalogue(CatalogueClient):
    """Yandex Music catalogue adapter implementing the CatalogueClient port."""

    def __init__(self, oauth_token: str):
        """Initialize the client with an OAuth token.

        Args:
            oauth_token: Yandex Music OAuth token
        """
        try:
            from yandex_music import Client
            self._client = Client(oauth_token).init()
        except ImportError:
            raise RuntimeError("yandex-music library not installed")
        except Exception as e:
            raise TemporaryFailure(f"Failed to initialize Yandex Music client: {e}")

    def search_tracks(self, query: str, limit: int) -> List[Track]:
        try:
            result = self._client.search(query, type_='track')
        except Exception as e:
            raise _translate(e, f"track search '{query}'")
        found = getattr(result, 'tracks', None) if result is not None else None
        items = getattr(found, 'results', None) or []
        return [yandex_track_to_domain(t) for t in items[:limit]]

    def search_albums(self, query: str, limit: int) -> List[Album]:
        try:
            result = self._client.search(query, type_='album')
        except Exception as e:
            raise _translate(e, f"album search '{query}'")
        found = getattr(result, 'albums', None) if result is not None else None
        items = getattr(found, 'results', None) or []
        return [yandex_album_to_domain(a) for a in items[:limit]]

    def fetch_track(self, track_id: str) -> Track:
        try:
            tracks = self._client.tracks([track_id])
        except Exception as e:
            raise _translate(e, f"track {track_id}")
        if not tracks:
            raise NotFound(f"Track {track_id} not found")
        return yandex_track_to_domain(tracks[0])

    def fetch_album(self, album_id: str, include_tracks: bool) -> Album:
        try:
            if include_tracks:
                album = self._client.albums_with_tracks(album_id)
            else:
                albums = self._client.albums([album_id])
                album = albums[0] if albums else None
        except Exception as e:
            raise _translate(e, f"album {album_id}")
        if album is None:
            raise NotFound(f"Album {album_id} not found")
        return yandex_album_to_domain(album, include_tracks)

    def list_library(self) -> List[Track]:
        """Tracks the user has liked."""
        try:
            likes = self._client.users_likes_tracks()
            full_tracks = likes.fetch_tracks() if likes is not None else []
        except Exception as e:
            raise _translate(e, "liked tracks")
        return [yandex_track_to_domain(t) for t in full_tracks]

    def stream_url(self, track_id: str, device_id: Optional[str] = None) -> str:
        """Direct link of the best mp3 rendition. Yandex has no device binding."""
        try:
            infos = self._client.tracks_download_info(track_id, get_direct_links=True)
        except Exception as e:
            raise _translate(e, f"download info for {track_id}")
        candidates = [i for i in infos or [] if getattr(i, 'codec', None) == PREFERRED_CODEC] or list(infos or [])
        if not candidates:
            raise NotFound(f"No stream available for track {track_id}")
        best = max(candidates, key=lambda i: getattr(i, 'bitrate_in_kbps', 0) or 0)
        link = getattr(best, 'direct_link', None)
        if not link:
            try:
                link = best.get_direct_link()
            except Exception as e:
                raise _translate(e, f"direct link for {track_id}")
        logger.debug(f"Resolved stream for {track_id} at {getattr(best, 'bitrate_in_kbps', '?')} kbps")
        return link
