from __future__ import annotations

from typing import Callable, List, Optional, Tuple

from cloudmpd.application.protocol import NEWLINE, RESP_CLIST_VERBOSE, AckError


class CommandList:
    """Buffers raw command lines between command_list_begin and command_list_end.

    While active every line is stored verbatim; nothing is executed until
    process() replays the buffer.
    """

    def __init__(self) -> None:
        self.commands: List[str] = []
        self.active = False
        self.ok_mode = False

    def begin(self, ok_mode: bool) -> None:
        self.commands = []
        self.active = True
        self.ok_mode = ok_mode

    def add(self, command: str) -> None:
        self.commands.append(command)

    def process(self, dispatch: Callable[[str], str]) -> Tuple[str, Optional[AckError]]:
        """Replay every buffered line through dispatch.

        Stops at the first AckError; returns the output gathered so far and
        that error, its index set to the failing line's position.
        """
        response = []
        for i, command in enumerate(self.commands):
            try:
                output = dispatch(command)
            except AckError as e:
                e.index = i
                return "".join(response), e
            response.append(output)
            if self.ok_mode:
                response.append(RESP_CLIST_VERBOSE + NEWLINE)
        return "".join(response), None

    def reset(self) -> None:
        self.commands = []
        self.active = False
        self.ok_mode = False
