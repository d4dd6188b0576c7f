"""Unbuffered byte reader over a child process's output pipe."""

from __future__ import annotations

import os
import select
import time
from typing import Optional

from ext_image_builder.storage.exceptions import ProtocolError, ProtocolTimeoutError


class ByteStreamReader:
    """Read one byte at a time from a file descriptor.

    Nothing is buffered: every call performs a single ``os.read(fd, 1)``
    after ``select`` reports the descriptor readable, so bytes the matcher
    has not asked for stay in the pipe.
    """

    def __init__(self, fd: int):
        self.fd = fd
        self.bytes_read = 0

    @classmethod
    def from_file(cls, stream) -> ByteStreamReader:
        return cls(stream.fileno())

    def read_byte(self, deadline: Optional[float] = None) -> int:
        """Return the next byte as an int.

        Args:
            deadline: ``time.monotonic()`` value after which to give up,
                or None to block indefinitely

        Raises:
            ProtocolTimeoutError: No byte arrived before the deadline
            ProtocolError: The child closed its output
        """
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProtocolTimeoutError("<byte>", 0)
            readable, _, _ = select.select([self.fd], [], [], remaining)
            if not readable:
                raise ProtocolTimeoutError("<byte>", remaining)
        try:
            data = os.read(self.fd, 1)
        except OSError as error:
            raise ProtocolError(f"Reading shell output failed: {error}") from error
        if not data:
            raise ProtocolError("Shell closed its output")
        self.bytes_read += 1
        return data[0]
