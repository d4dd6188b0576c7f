"""Prompt detection over the raw output of an interactive shell.

The editing shell prints no message framing. A command is complete when
the shell has echoed the typed line and printed its idle prompt again, so
the only synchronisation available is scanning the byte stream for those
markers. Interactive shells also correct their own echo inline: a space
followed by a carriage return erases the previous character. The matcher
undoes that edit so the scan stays aligned with what the shell meant to
print.

Operations:
    - PromptMatcher: byte-at-a-time marker scan with edit retraction
    - read_until(): read from a stream until a marker has been seen
    - EchoedPromptFraming: wait for the command echo, then the prompt
    - PromptOnlyFraming: wait for the prompt only
"""

from __future__ import annotations

import os
import time
from typing import TYPE_CHECKING, Optional, Protocol

from ext_image_builder.logging import LoggerFactory
from ext_image_builder.storage.exceptions import ProtocolError, ProtocolTimeoutError

if TYPE_CHECKING:
    from loguru import Logger

    from .stream import ByteStreamReader


SPACE = 0x20
CARRIAGE_RETURN = 0x0D

_log = LoggerFactory.for_debugfs()


class PromptMatcher:
    """Incremental scan for one marker.

    Not a KMP matcher: on a mismatch the cursor goes back to the start and
    only the current byte is re-tested against the first marker byte. Echoed
    text holding partial marker prefixes costs extra rescanning, never an
    early match.
    """

    def __init__(self, marker: str | bytes):
        if isinstance(marker, str):
            marker = os.fsencode(marker)
        if not marker:
            raise ValueError("marker must not be empty")
        self.marker = marker
        self.cursor = 0
        self.response = bytearray()
        # Cursor value before each byte in ``response`` was appended
        self._history: list[int] = []
        self.last_byte: Optional[int] = None

    @property
    def matched(self) -> bool:
        return (
            self.cursor == len(self.marker) and self.last_byte == self.marker[-1]
        )

    def feed(self, byte: int) -> bool:
        """Consume one byte. Returns True once the marker has been seen."""
        if byte == CARRIAGE_RETURN and self.response and self.response[-1] == SPACE:
            # " \r" erases the character before the space
            self._retract()
            self._retract()
            return False

        self._history.append(self.cursor)
        self.response.append(byte)
        self.last_byte = byte

        if byte == self.marker[self.cursor]:
            self.cursor += 1
        elif byte == self.marker[0]:
            self.cursor = 1
        else:
            self.cursor = 0
        return self.matched

    def _retract(self) -> None:
        if not self.response:
            return
        self.response.pop()
        self.cursor = self._history.pop()
        self.last_byte = self.response[-1] if self.response else None

    def text(self) -> str:
        return self.response.decode("utf-8", errors="replace")

    def read(
        self,
        reader: ByteStreamReader,
        deadline: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Feed bytes from ``reader`` until the marker matches.

        Raises:
            ProtocolTimeoutError: The deadline passed first
            ProtocolError: The stream ended first
        """
        try:
            while not self.feed(reader.read_byte(deadline)):
                pass
        except ProtocolTimeoutError:
            raise ProtocolTimeoutError(
                self.marker.decode("utf-8", errors="replace"),
                timeout or 0.0,
                response=self.text(),
            ) from None
        except ProtocolError as error:
            raise ProtocolError(
                f"{error} while waiting for "
                f"{self.marker.decode('utf-8', errors='replace')!r}",
                response=self.text(),
            ) from error
        return self.text()


def read_until(
    reader: ByteStreamReader,
    marker: str,
    timeout: Optional[float] = None,
    log: Optional[Logger] = None,
) -> str:
    """Read until ``marker`` has been echoed and return everything read.

    The returned text includes the marker. ``timeout`` bounds the whole call;
    None waits forever.
    """
    deadline = time.monotonic() + timeout if timeout is not None else None
    response = PromptMatcher(marker).read(reader, deadline, timeout)
    (log or _log).trace("read until {!r}: {!r}", marker, response)
    return response


# ==============================================================================
# Response framing
# ==============================================================================


class ResponseFraming(Protocol):
    """Decides when the response to one command is complete."""

    def read_response(
        self,
        reader: ByteStreamReader,
        command: str,
        prompt: str,
        timeout: Optional[float],
    ) -> str: ...


class EchoedPromptFraming:
    """The shell echoes the typed line, prints its output, then the prompt."""

    def read_response(
        self,
        reader: ByteStreamReader,
        command: str,
        prompt: str,
        timeout: Optional[float],
    ) -> str:
        deadline = time.monotonic() + timeout if timeout is not None else None
        PromptMatcher(command).read(reader, deadline, timeout)
        response = PromptMatcher(prompt).read(reader, deadline, timeout)
        _log.trace("{!r} -> {!r}", command, response)
        return response


class PromptOnlyFraming:
    """The shell does not echo input; the prompt alone ends a response."""

    def read_response(
        self,
        reader: ByteStreamReader,
        command: str,
        prompt: str,
        timeout: Optional[float],
    ) -> str:
        deadline = time.monotonic() + timeout if timeout is not None else None
        response = PromptMatcher(prompt).read(reader, deadline, timeout)
        _log.trace("{!r} -> {!r}", command, response)
        return response
