from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Track:
    """Domain entity representing a catalogue track independent of providers."""

    id: str = ""
    nid: str = ""
    title: str = ""
    album: str = ""
    artist: str = ""
    album_id: str = ""
    duration_ms: int = 0

    @property
    def file_id(self) -> str:
        """Identifier clients see in ``file:`` lines; falls back to the network id."""
        return self.id or self.nid


@dataclass(frozen=True)
class Album:
    """Domain entity representing an album, optionally with its tracks."""

    id: str
    name: str = ""
    artist: str = ""
    year: Optional[str] = None
    tracks: Tuple[Track, ...] = ()


@dataclass(frozen=True)
class Artist:
    """Artist projection derived from album rows."""

    name: str
