from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, List

from cloudmpd.application.daemon import Daemon
from cloudmpd.application.formatting import (
    format_album, format_artist, format_commands, format_track, format_tracks,
)
from cloudmpd.application.protocol import (
    ACK_ERROR_ARG, ACK_ERROR_NO_EXIST, ACK_ERROR_SYSTEM, ACK_ERROR_UNKNOWN,
    AckError, CloseConnection, cast_int,
)
from cloudmpd.application.tokenizer import Tokenizer
from cloudmpd.domain.entities import Track
from cloudmpd.domain.errors import (
    EmptyPlaylist, NotFound, OutOfRange, PermanentFailure, RateLimited, TemporaryFailure,
)

logger = logging.getLogger(__name__)

LIBRARY_PLAYLIST = "Library"
OUTPUT_NAME = "cloudmpd output"

# Lookup failures a client sees as "no such song".
_MISSING = (NotFound, OutOfRange, EmptyPlaylist)
_REMOTE = (RateLimited, TemporaryFailure, PermanentFailure)


class CommandName(str, Enum):
    """Every command the daemon answers. Anything else is an unknown command."""

    ADD = "add"
    ADDID = "addid"
    PLAYLIST = "playlist"
    PLAYLISTFIND = "playlistfind"
    PLAYLISTINFO = "playlistinfo"
    PLAYLISTID = "playlistid"
    PLAY = "play"
    PLAYID = "playid"
    STOP = "stop"
    PAUSE = "pause"
    CURRENTSONG = "currentsong"
    STATUS = "status"
    STATS = "stats"
    OUTPUTS = "outputs"
    COMMANDS = "commands"
    NOTCOMMANDS = "notcommands"
    SEARCH = "search"
    FIND = "find"
    LIST = "list"
    LISTPLAYLISTS = "listplaylists"
    LISTPLAYLISTINFO = "listplaylistinfo"
    LSINFO = "lsinfo"
    URLHANDLERS = "urlhandlers"
    TAGTYPES = "tagtypes"
    PING = "ping"
    CLOSE = "close"


NOT_SUPPORTED_COMMANDS = ("idle", "noidle")


class Dispatcher:
    """Maps one command line to its response body.

    A handler either returns the full body or raises; a failed command never
    produces partial output.
    """

    def __init__(self, daemon: Daemon):
        self.daemon = daemon
        self._handlers: Dict[CommandName, Callable[[List[str]], str]] = {
            CommandName.ADD: self._add,
            CommandName.ADDID: self._addid,
            CommandName.PLAYLIST: self._playlist,
            CommandName.PLAYLISTFIND: self._playlistfind,
            CommandName.PLAYLISTINFO: self._playlistinfo,
            CommandName.PLAYLISTID: self._playlistinfo,
            CommandName.PLAY: self._play,
            CommandName.PLAYID: self._play,
            CommandName.STOP: self._stop,
            CommandName.PAUSE: self._pause,
            CommandName.CURRENTSONG: self._currentsong,
            CommandName.STATUS: self._status,
            CommandName.STATS: self._stats,
            CommandName.OUTPUTS: self._outputs,
            CommandName.COMMANDS: self._commands,
            CommandName.NOTCOMMANDS: self._notcommands,
            CommandName.SEARCH: self._search,
            CommandName.FIND: self._find,
            CommandName.LIST: self._list,
            CommandName.LISTPLAYLISTS: self._listplaylists,
            CommandName.LISTPLAYLISTINFO: self._listplaylistinfo,
            CommandName.LSINFO: self._lsinfo,
            CommandName.URLHANDLERS: self._empty,
            CommandName.TAGTYPES: self._empty,
            CommandName.PING: self._empty,
            CommandName.CLOSE: self._close,
        }
        missing = set(CommandName) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for commands: {sorted(c.value for c in missing)}")

    @property
    def playlist(self):
        return self.daemon.playlist

    @property
    def content(self):
        return self.daemon.content

    @property
    def player(self):
        return self.daemon.player

    def dispatch(self, line: str) -> str:
        """Run one command line and return its response body (without OK)."""
        tok = Tokenizer(line)
        name = tok.next_param()
        if not name:
            raise AckError(ACK_ERROR_UNKNOWN, "No command given")
        try:
            command = CommandName(name)
        except ValueError:
            raise AckError.unknown_command(name)
        args = tok.params()

        self.daemon.metrics.record_command()
        try:
            with self.daemon.metrics.command_timer(command.value):
                return self._handlers[command](args)
        except AckError as e:
            e.command = command.value
            raise
        except CloseConnection:
            raise
        except _MISSING:
            raise AckError(ACK_ERROR_NO_EXIST, "", command.value)
        except _REMOTE as e:
            logger.warning(f"Catalogue failure during {command.value}: {e}")
            raise AckError(ACK_ERROR_SYSTEM, "catalogue unavailable", command.value)
        except Exception:
            logger.exception(f"Unhandled error in {command.value}")
            raise AckError(ACK_ERROR_SYSTEM, "server error", command.value)

    # Helpers

    def _lookup(self, track_id: str) -> Track:
        try:
            return self.content.find_track(track_id)
        except _MISSING + _REMOTE as e:
            logger.info(f"Track {track_id} unavailable: {e}")
            raise AckError.no_exist()

    def _song_block(self, pos: int, track: Track) -> str:
        return format_track(track) + f"Pos: {pos}\nId: {pos}\n"

    @staticmethod
    def _require(args: List[str], count: int) -> None:
        if len(args) < count:
            raise AckError(ACK_ERROR_ARG, "wrong number of arguments")

    # Playlist mutation

    def _add(self, args: List[str]) -> str:
        self._require(args, 1)
        with self.daemon.lock:
            self.playlist.add_track(args[0])
        return ""

    def _addid(self, args: List[str]) -> str:
        self._require(args, 1)
        with self.daemon.lock:
            index = self.playlist.add_track(args[0])
        return f"Id: {index}\n"

    # Playlist lookups

    def _playlist(self, args: List[str]) -> str:
        with self.daemon.lock:
            return self.playlist.render()

    def _playlistfind(self, args: List[str]) -> str:
        self._require(args, 2)
        track_id = args[1]
        with self.daemon.lock:
            pos = self.playlist.track_position(track_id)
        if pos < 0:
            raise AckError.no_exist()
        return self._song_block(pos, self._lookup(track_id))

    def _playlistinfo(self, args: List[str]) -> str:
        with self.daemon.lock:
            if args:
                try:
                    pos = int(args[0])
                except ValueError:
                    raise AckError.no_exist()
                entries = [(pos, self.playlist.track_at_position(pos))]
            else:
                entries = list(enumerate(self.playlist.track_ids()))
        return "".join(self._song_block(pos, self._lookup(track_id)) for pos, track_id in entries)

    # Playback control

    def _play(self, args: List[str]) -> str:
        pos = cast_int(args[0]) if args else -1
        with self.daemon.lock:
            if pos < 0:
                pos = max(self.playlist.position, 0)
            track_id = self.playlist.track_at_position(pos)
        try:
            url = self.content.track_stream_url(track_id)
        except _MISSING + _REMOTE as e:
            logger.info(f"No stream for {track_id}: {e}")
            raise AckError.no_exist()
        with self.daemon.lock:
            self.player.play(url)
            self.playlist.set_position(pos)
        return ""

    def _stop(self, args: List[str]) -> str:
        self.player.stop()
        return ""

    def _pause(self, args: List[str]) -> str:
        self.player.pause()
        return ""

    def _currentsong(self, args: List[str]) -> str:
        if self.player.state() != "play":
            return ""
        with self.daemon.lock:
            pos = self.playlist.position
            track_id = self.playlist.current_track()
        return self._song_block(pos, self._lookup(track_id))

    # Introspection

    def _status(self, args: List[str]) -> str:
        state = self.player.state()
        with self.daemon.lock:
            length = self.playlist.length()
            pos = self.playlist.position
            current = self.playlist.track_ids()[pos] if 0 <= pos < length else None
        out = "playlist: 0\n"
        out += f"playlistlength: {length}\n"
        out += f"state: {state}\n"
        if state == "play" and current is not None:
            out += f"song: {pos}\nsongid: {pos}\n"
            elapsed = self.player.position()
            if elapsed is not None:
                seconds = int(elapsed)
                cached = self.content.cached_track(current)
                total = cached.duration_ms // 1000 if cached else 0
                out += f"elapsed: {seconds}.00\n"
                out += f"time: {seconds}:{total}\n"
        return out

    def _stats(self, args: List[str]) -> str:
        return f"uptime: {self.daemon.uptime()}\n"

    def _outputs(self, args: List[str]) -> str:
        return f"outputid: 0\noutputname: {OUTPUT_NAME}\noutputenabled: 1\n"

    def _commands(self, args: List[str]) -> str:
        return format_commands(sorted(c.value for c in CommandName))

    def _notcommands(self, args: List[str]) -> str:
        return format_commands(NOT_SUPPORTED_COMMANDS)

    def _empty(self, args: List[str]) -> str:
        return ""

    def _close(self, args: List[str]) -> str:
        raise CloseConnection()

    # Search and browse

    @staticmethod
    def _query_values(args: List[str]) -> str:
        """Join the values of ``<tag> <value> [<tag> <value> ...]`` pairs."""
        return " ".join(args[1::2])

    def _search(self, args: List[str]) -> str:
        self._require(args, 2)
        return format_tracks(self.content.find_tracks(self._query_values(args)))

    def _find(self, args: List[str]) -> str:
        self._require(args, 2)
        tag = args[0].lower()
        if tag == "album":
            tracks = self.content.find_album_tracks_by_name(args[1])
        elif tag == "artist":
            rest = args[2:]
            album = rest[1] if len(rest) >= 2 and rest[0].lower() == "album" else ""
            tracks = self.content.find_tracks_by_artist(args[1], album)
        else:
            tracks = self.content.find_tracks(self._query_values(args))
        return format_tracks(tracks)

    def _list(self, args: List[str]) -> str:
        self._require(args, 1)
        tag = args[0].lower()
        rest = args[1:]
        if tag == "artist":
            query = rest[0] if rest else ""
            return "".join(format_artist(a) for a in self.content.list_artists(query))
        if tag == "album":
            if len(rest) >= 2 and rest[0].lower() == "artist":
                albums = self.content.find_albums_by_artist_name(rest[1])
            elif len(rest) == 1:
                albums = self.content.find_albums_by_artist_name(rest[0])
            elif len(rest) >= 2:
                albums = self.content.find_albums(self._query_values(rest))
            else:
                albums = []
            return "".join(format_album(a) for a in albums)
        raise AckError(ACK_ERROR_ARG, f'unsupported tag "{args[0]}"')

    def _listplaylists(self, args: List[str]) -> str:
        return f"playlist: {LIBRARY_PLAYLIST}\n"

    def _listplaylistinfo(self, args: List[str]) -> str:
        self._require(args, 1)
        if args[0] != LIBRARY_PLAYLIST:
            raise AckError.no_exist()
        return format_tracks(self.content.user_tracks())

    def _lsinfo(self, args: List[str]) -> str:
        return format_tracks(self.content.user_tracks())
