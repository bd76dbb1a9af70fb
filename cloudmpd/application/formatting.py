from __future__ import annotations

from typing import Iterable

from cloudmpd.domain.entities import Album, Artist, Track


def format_track(track: Track) -> str:
    """MPD song block: file, Time (whole seconds), Artist, Title, Album."""
    return (
        f"file: {track.file_id}\n"
        f"Time: {max(0, int(track.duration_ms or 0)) // 1000}\n"
        f"Artist: {track.artist}\n"
        f"Title: {track.title}\n"
        f"Album: {track.album}\n"
    )


def format_album(album: Album) -> str:
    out = f"Album: {album.name}\n"
    if album.year:
        out += f"Date: {album.year}\n"
    return out


def format_artist(artist: Artist) -> str:
    return f"Artist: {artist.name}\n"


def format_tracks(tracks: Iterable[Track]) -> str:
    return "".join(format_track(t) for t in tracks)


def format_commands(names: Iterable[str]) -> str:
    return "".join(f"command: {name}\n" for name in names)
