"""MPD wire-level constants and the protocol error type."""

PROTOCOL_VERSION = "0.17.0"
HELLO = f"OK MPD {PROTOCOL_VERSION}"

CLIST_BEGIN = "command_list_begin"
CLIST_VERBOSE_BEGIN = "command_list_ok_begin"
CLIST_END = "command_list_end"

RESP_OK = "OK"
RESP_CLIST_VERBOSE = "list_OK"
RESP_ERR = "ACK"

NEWLINE = "\n"

ACK_ERROR_NOT_LIST = 1
ACK_ERROR_ARG = 2
ACK_ERROR_PASSWORD = 3
ACK_ERROR_PERMISSION = 4
ACK_ERROR_UNKNOWN = 5

ACK_ERROR_NO_EXIST = 50
ACK_ERROR_PLAYLIST_MAX = 51
ACK_ERROR_SYSTEM = 52
ACK_ERROR_PLAYLIST_LOAD = 53
ACK_ERROR_UPDATE_ALREADY = 54
ACK_ERROR_PLAYER_SYNC = 55
ACK_ERROR_EXIST = 56


class AckError(Exception):
    """An error reported to the client as a single ``ACK`` line.

    ``command`` is filled in by the dispatcher and ``index`` by the command
    list when the failure happened inside one.
    """

    def __init__(self, code: int, message: str = "", command: str = "", index: int = 0) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.command = command
        self.index = index

    def response(self) -> str:
        line = f"{RESP_ERR} [{self.code}@{self.index}] {{{self.command}}}"
        if self.message:
            line += f" {self.message}"
        return line + NEWLINE

    @classmethod
    def unknown_command(cls, name: str) -> "AckError":
        return cls(ACK_ERROR_UNKNOWN, f'unknown command "{name}"')

    @classmethod
    def bad_argument(cls, message: str = "invalid type for argument") -> "AckError":
        return cls(ACK_ERROR_ARG, message)

    @classmethod
    def no_exist(cls, message: str = "") -> "AckError":
        return cls(ACK_ERROR_NO_EXIST, message)


class CloseConnection(Exception):
    """Raised by the close command; the session loop drops the connection."""


def cast_int(value: str) -> int:
    """Parse an integer argument, raising the protocol's argument error."""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise AckError.bad_argument(f'need an integer, got "{value}"')
