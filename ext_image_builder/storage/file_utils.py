"""File padding and splicing helpers for output images."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Optional

from ext_image_builder.storage.exceptions import ImageFileError

CHUNK_SIZE = 4096

_SIZE_PATTERN = re.compile(r"^\s*(0[xX][0-9a-fA-F]+|\d+)\s*([kKMG]?)\s*$")
_SIZE_SUFFIXES = {"": 1, "k": 1024, "K": 1024, "M": 1024**2, "G": 1024**3}


class PadMode(Enum):
    OVERWRITE = "overwrite"
    APPEND = "append"


def parse_size(value: str | int) -> int:
    """Parse a size with an optional K/k, M or G suffix (powers of 1024).

    Example: "64M" -> 67108864, "0x1000" -> 4096
    """
    if isinstance(value, int):
        return value
    match = _SIZE_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, suffix = match.groups()
    base = 16 if number[:2].lower() == "0x" else 10
    return int(number, base) * _SIZE_SUFFIXES[suffix]


def pad_file(
    infile: Optional[str | Path],
    outfile: str | Path,
    size: int,
    fillpattern: int = 0xFF,
    mode: PadMode = PadMode.OVERWRITE,
) -> None:
    """Copy ``infile`` into ``outfile`` and fill up to ``size`` bytes.

    Without ``infile`` the existing ``outfile`` itself is padded to ``size``.

    Raises:
        ImageFileError: A file cannot be opened, or the input is larger
            than ``size``
    """
    outfile = Path(outfile)
    fill = bytes([fillpattern & 0xFF]) * CHUNK_SIZE

    if infile is None:
        try:
            current = outfile.stat().st_size
        except OSError as error:
            raise ImageFileError(f"stat {outfile}: {error.strerror}", str(outfile)) from error
        if current > size:
            raise ImageFileError(
                f"'{outfile}' is already larger than {size} bytes", str(outfile)
            )
        remaining = size - current
        file_mode = "ab"
    else:
        remaining = size
        file_mode = "wb" if mode == PadMode.OVERWRITE else "ab"

    try:
        source = open(infile, "rb") if infile is not None else None
    except OSError as error:
        raise ImageFileError(f"open {infile}: {error.strerror}", str(infile)) from error

    try:
        try:
            target = open(outfile, file_mode)
        except OSError as error:
            raise ImageFileError(
                f"open {outfile}: {error.strerror}", str(outfile)
            ) from error
        with target:
            if source is not None:
                while remaining:
                    chunk = source.read(min(remaining, CHUNK_SIZE))
                    if not chunk:
                        break
                    target.write(chunk)
                    remaining -= len(chunk)
                if not remaining and source.read(1):
                    raise ImageFileError(
                        f"input file '{infile}' too large", str(infile)
                    )
            while remaining:
                now = min(remaining, CHUNK_SIZE)
                target.write(fill[:now])
                remaining -= now
    finally:
        if source is not None:
            source.close()


def insert_data(data: bytes, outfile: str | Path, offset: int) -> None:
    """Write ``data`` into ``outfile`` at ``offset``, creating the file if needed."""
    outfile = Path(outfile)
    file_mode = "r+b" if outfile.exists() else "wb"
    try:
        with open(outfile, file_mode) as target:
            target.seek(offset)
            target.write(data)
    except OSError as error:
        raise ImageFileError(f"write {outfile}: {error.strerror}", str(outfile)) from error
