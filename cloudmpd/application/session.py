from __future__ import annotations

import logging

from cloudmpd.application.command_list import CommandList
from cloudmpd.application.dispatcher import Dispatcher
from cloudmpd.application.protocol import (
    ACK_ERROR_NOT_LIST, CLIST_BEGIN, CLIST_END, CLIST_VERBOSE_BEGIN, NEWLINE, RESP_OK, AckError,
)
from cloudmpd.application.tokenizer import Tokenizer
from cloudmpd.crosscutting.logging import CorrelationContext, log_command_failed

logger = logging.getLogger(__name__)


class ClientSession:
    """Protocol framing for one connection.

    ``feed`` takes one line without its terminator and returns what must be
    written back; an empty string means nothing is sent yet (the line was
    buffered into the command list). The command list itself belongs to the
    daemon and is shared by every connection.
    """

    def __init__(self, dispatcher: Dispatcher, client: str = ""):
        self.dispatcher = dispatcher
        self.client = client
        self.commands_seen = 0

    @property
    def daemon(self):
        return self.dispatcher.daemon

    @property
    def metrics(self):
        return self.daemon.metrics

    @property
    def command_list(self) -> CommandList:
        return self.daemon.command_list

    def feed(self, line: str) -> str:
        line = line.strip()
        self.commands_seen += 1
        keyword = Tokenizer(line).next_param()

        with self.daemon.lock:
            command_list = self.daemon.command_list
            if command_list.active:
                if keyword == CLIST_END:
                    return self._finish_list(command_list)
                if keyword in (CLIST_BEGIN, CLIST_VERBOSE_BEGIN):
                    command_list.reset()
                    return self._ack(AckError(ACK_ERROR_NOT_LIST, "nested command list", keyword))
                command_list.add(line)
                return ""

            if keyword == CLIST_BEGIN:
                command_list.begin(ok_mode=False)
                return ""
            if keyword == CLIST_VERBOSE_BEGIN:
                command_list.begin(ok_mode=True)
                return ""
            if keyword == CLIST_END:
                return self._ack(AckError(ACK_ERROR_NOT_LIST, "not in command list", keyword))

        logger.debug(f"Command: {line}")
        try:
            output = self.dispatcher.dispatch(line)
        except AckError as e:
            return self._ack(e)
        return output + RESP_OK + NEWLINE

    def _finish_list(self, command_list: CommandList) -> str:
        # Called with the daemon lock held; the replay is atomic for other connections
        logger.debug(f"Running command list of {len(command_list.commands)} commands")
        try:
            output, error = command_list.process(self.dispatcher.dispatch)
        finally:
            command_list.reset()
        if error is not None:
            return output + self._ack(error)
        return output + RESP_OK + NEWLINE

    def _ack(self, error: AckError) -> str:
        self.metrics.record_ack(error.code)
        with CorrelationContext(client=self.client or None):
            log_command_failed(logger, error.command, error.code, error.message, error.index)
        return error.response()
