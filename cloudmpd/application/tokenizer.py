from __future__ import annotations

from typing import List, Optional

_SPACES = (" ", "\t")


class Tokenizer:
    """Splits one protocol line into parameters.

    Unquoted parameters are separated by runs of spaces/tabs. A parameter
    starting with a double quote runs to the next unescaped quote; inside it a
    backslash keeps the following character literally. Once the input is
    exhausted every call returns an empty string.
    """

    def __init__(self, line: str) -> None:
        self._input = line
        self._pos = 0

    def _peek(self) -> Optional[str]:
        if self._pos >= len(self._input):
            return None
        return self._input[self._pos]

    def _next(self) -> Optional[str]:
        ch = self._peek()
        if ch is not None:
            self._pos += 1
        return ch

    def _consume_spaces(self) -> None:
        while self._peek() in _SPACES:
            self._pos += 1

    def next_word(self) -> str:
        """Return characters up to the next whitespace run, discarding the run."""
        chars = []
        while True:
            ch = self._peek()
            if ch is None:
                break
            if ch in _SPACES:
                self._consume_spaces()
                break
            chars.append(self._next())
        return "".join(chars)

    def next_param(self) -> str:
        """Return the next parameter, quoted or not."""
        if self._peek() == '"':
            return self._next_quoted()
        return self.next_word()

    def _next_quoted(self) -> str:
        self._next()
        chars = []
        while True:
            ch = self._next()
            if ch is None:
                # Unterminated quote: keep what we have.
                break
            if ch == '"':
                break
            if ch == "\\":
                escaped = self._next()
                if escaped is None:
                    break
                chars.append(escaped)
                continue
            chars.append(ch)
        self._consume_spaces()
        return "".join(chars)

    def params(self) -> List[str]:
        """Return every remaining parameter, stopping at the first empty one."""
        result = []
        while True:
            param = self.next_param()
            if not param:
                return result
            result.append(param)


def tokenize(line: str) -> List[str]:
    return Tokenizer(line).params()
