import os
import time
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
import logging
from urllib3.exceptions import ReadTimeoutError

import spotipy
from spotipy.oauth2 import SpotifyOAuth

from cloudmpd.domain.entities import Album, Track
from cloudmpd.domain.ports import CatalogueClient
from cloudmpd.domain.errors import NotFound, PermanentFailure, RateLimited, TemporaryFailure

logger = logging.getLogger(__name__)

# Spotify caps every paged endpoint at 50 items
PAGE_SIZE = 50


def _artist_names(item: Dict[str, Any]) -> str:
    return ', '.join(a.get('name', '') for a in item.get('artists') or [] if a.get('name'))


def spotify_track_to_domain(spotify_track: Dict[str, Any], album: Optional[Dict[str, Any]] = None) -> Track:
    """Convert a Spotify track object to the domain Track.

    Album tracks come without their album object, so the caller passes it in.
    """
    album = spotify_track.get('album') or album or {}
    return Track(
        id=spotify_track.get('id') or '',
        nid=spotify_track.get('uri') or '',
        title=spotify_track.get('name', ''),
        album=album.get('name', ''),
        artist=_artist_names(spotify_track),
        album_id=album.get('id') or '',
        duration_ms=int(spotify_track.get('duration_ms') or 0),
    )


def spotify_album_to_domain(spotify_album: Dict[str, Any], include_tracks: bool = False) -> Album:
    """Convert a Spotify album object to the domain Album."""
    release_date = spotify_album.get('release_date') or ''
    tracks = ()
    if include_tracks:
        items = (spotify_album.get('tracks') or {}).get('items') or []
        tracks = tuple(spotify_track_to_domain(t, spotify_album) for t in items if t)
    return Album(
        id=spotify_album.get('id') or '',
        name=spotify_album.get('name', ''),
        artist=_artist_names(spotify_album),
        year=release_date[:4] or None,
        tracks=tracks,
    )


class SpotifyCatalogue(CatalogueClient):
    """Spotify catalogue adapter.

    Spotify does not hand out full audio streams to third parties; the stream
    URL is the track's 30 second preview.
    """

    def __init__(self,
                 access_token: str,
                 refresh_token: str,
                 expires_at: Optional[datetime] = None,
                 client_id: Optional[str] = None,
                 client_secret: Optional[str] = None,
                 redirect_uri: Optional[str] = None,
                 on_token_refresh: Optional[Callable[[str, str], None]] = None):
        """Initialize Spotify catalogue.

        Args:
            access_token: Spotify access token
            refresh_token: Spotify refresh token
            expires_at: Token expiration time
            client_id: Spotify client ID for token refresh
            client_secret: Spotify client secret for token refresh
            redirect_uri: Redirect URI registered for the client
            on_token_refresh: Called with (access_token, refresh_token) after a refresh
        """
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_at = expires_at
        self.client_id = client_id or os.getenv('SPOTIFY_CLIENT_ID')
        self.client_secret = client_secret or os.getenv('SPOTIFY_CLIENT_SECRET')
        self.redirect_uri = redirect_uri or os.getenv('SPOTIFY_REDIRECT_URI', 'http://localhost:8080/callback')
        self._on_token_refresh = on_token_refresh

        self._client = spotipy.Spotify(auth=self.access_token, requests_timeout=15)
        self._market = os.getenv('CLOUDMPD_MARKET') or None

        # Token refresh tracking
        self._last_refresh_attempt = 0
        self._refresh_cooldown = 5  # seconds between refresh attempts

    def _refresh_access_token(self) -> bool:
        """Refresh Spotify access token.

        Returns:
            True if token was refreshed successfully, False otherwise
        """
        current_time = time.time()
        if current_time - self._last_refresh_attempt < self._refresh_cooldown:
            return False
        self._last_refresh_attempt = current_time

        if not self.client_id or not self.client_secret:
            logger.warning("Cannot refresh token: missing client credentials")
            return False

        try:
            logger.info("Refreshing Spotify access token...")
            oauth_manager = SpotifyOAuth(
                client_id=self.client_id,
                client_secret=self.client_secret,
                redirect_uri=self.redirect_uri,
                scope='user-library-read'
            )
            token_info = oauth_manager.refresh_access_token(self.refresh_token)
        except Exception as e:
            logger.error(f"Failed to refresh Spotify token: {e}")
            return False

        if not token_info or 'access_token' not in token_info:
            logger.error("Failed to refresh token: invalid response")
            return False

        self.access_token = token_info['access_token']
        if 'refresh_token' in token_info:
            self.refresh_token = token_info['refresh_token']
        if 'expires_at' in token_info:
            self.expires_at = datetime.fromtimestamp(token_info['expires_at'])

        self._client = spotipy.Spotify(auth=self.access_token, requests_timeout=15)

        if self._on_token_refresh:
            try:
                self._on_token_refresh(self.access_token, self.refresh_token)
            except Exception as e:
                logger.warning(f"Failed to store refreshed tokens: {e}")

        logger.info("Spotify access token refreshed successfully")
        return True

    def _call(self, operation: str, method: str, *args, **kwargs):
        """Invoke a spotipy method, refreshing the token once on 401."""
        refreshed = False
        while True:
            try:
                return getattr(self._client, method)(*args, **kwargs)
            except ReadTimeoutError:
                raise TemporaryFailure(f"Read timeout during {operation}")
            except Exception as e:
                status = getattr(e, 'http_status', None)
                if status == 401:
                    if not refreshed:
                        logger.warning(f"Spotify token expired during {operation}, attempting refresh...")
                        refreshed = True
                        if self._refresh_access_token():
                            continue
                    raise PermanentFailure(f"Spotify rejected credentials during {operation}")
                if status == 429:
                    headers = getattr(e, 'headers', None) or {}
                    retry_after = int(headers.get('Retry-After', 1))
                    raise RateLimited(retry_after_ms=retry_after * 1000)
                if status in (400, 404):
                    raise NotFound(f"{operation}: {e}")
                raise TemporaryFailure(f"Failed to {operation}: {e}")

    def _paged(self, operation: str, method: str, key: Optional[str], limit: int, **kwargs) -> List[Dict[str, Any]]:
        """Collect up to limit items from an offset-paginated endpoint."""
        items: List[Dict[str, Any]] = []
        offset = 0
        while len(items) < limit:
            page_size = min(PAGE_SIZE, limit - len(items))
            page = self._call(operation, method, limit=page_size, offset=offset, **kwargs)
            if page and key:
                page = page.get(key)
            batch = (page or {}).get('items') or []
            items.extend(batch)
            if len(batch) < page_size or not (page or {}).get('next'):
                break
            offset += page_size
        return items[:limit]

    def search_tracks(self, query: str, limit: int) -> List[Track]:
        items = self._paged(f"search tracks '{query}'", 'search', 'tracks', limit,
                            q=query, type='track', market=self._market)
        return [spotify_track_to_domain(t) for t in items if t and t.get('id')]

    def search_albums(self, query: str, limit: int) -> List[Album]:
        items = self._paged(f"search albums '{query}'", 'search', 'albums', limit,
                            q=query, type='album', market=self._market)
        return [spotify_album_to_domain(a) for a in items if a and a.get('id')]

    def fetch_track(self, track_id: str) -> Track:
        data = self._call(f"fetch track {track_id}", 'track', track_id, market=self._market)
        if not data:
            raise NotFound(f"Track {track_id} not found")
        return spotify_track_to_domain(data)

    def fetch_album(self, album_id: str, include_tracks: bool) -> Album:
        data = self._call(f"fetch album {album_id}", 'album', album_id, market=self._market)
        if not data:
            raise NotFound(f"Album {album_id} not found")
        return spotify_album_to_domain(data, include_tracks)

    def list_library(self) -> List[Track]:
        """The user's saved tracks, newest first."""
        tracks = []
        offset = 0
        while True:
            page = self._call("list saved tracks", 'current_user_saved_tracks',
                              limit=PAGE_SIZE, offset=offset)
            items = (page or {}).get('items') or []
            for item in items:
                track_data = item.get('track')
                if track_data and track_data.get('id'):
                    tracks.append(spotify_track_to_domain(track_data))
            if len(items) < PAGE_SIZE or not page.get('next'):
                break
            offset += PAGE_SIZE
        return tracks

    def stream_url(self, track_id: str, device_id: Optional[str] = None) -> str:
        data = self._call(f"fetch track {track_id}", 'track', track_id, market=self._market)
        preview = (data or {}).get('preview_url')
        if not preview:
            raise NotFound(f"No preview stream for track {track_id}")
        return preview
