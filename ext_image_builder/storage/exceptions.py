"""Custom exceptions for image build operations.

This module defines a hierarchy of exceptions for image builds to provide
more specific error handling and better error messages.

Exception Hierarchy:
    ImageBuildError (base)
        ├── ConfigError
        ├── SpawnError
        ├── ProtocolError
        │   └── ProtocolTimeoutError
        ├── PathError
        ├── SkippableEntryError
        ├── BatchToolError
        └── ImageFileError

Usage:
    from ext_image_builder.storage.exceptions import BatchToolError

    if returncode > 2:
        raise BatchToolError(command, returncode)
"""

from __future__ import annotations

from typing import Sequence


class ImageBuildError(Exception):
    """Base exception for all image build operations."""



class ConfigError(ImageBuildError):
    """Configuration could not be turned into an image list."""



class SpawnError(ImageBuildError):
    """The interactive shell process could not be started."""

    def __init__(self, command: Sequence[str], reason: str = ""):
        self.command = list(command)
        self.reason = reason
        msg = f"Failed to start: {' '.join(self.command)}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ProtocolError(ImageBuildError):
    """The shell's output never showed the expected marker or went out of sync."""

    def __init__(self, message: str, response: str = ""):
        self.response = response
        super().__init__(message)


class ProtocolTimeoutError(ProtocolError):
    """Timed out waiting for the shell to echo a marker."""

    def __init__(self, marker: str, timeout: float, response: str = ""):
        self.marker = marker
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s waiting for {marker!r}", response=response
        )


class PathError(ImageBuildError):
    """A directory inside the image could not be created or entered."""

    def __init__(self, path: str, response: str = ""):
        self.path = path
        self.response = response
        msg = f"Directory {path} is not usable inside the image"
        if response:
            msg += f": {response.strip()}"
        super().__init__(msg)


class SkippableEntryError(ImageBuildError):
    """A source entry that is skipped with a warning."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Skipping {path}: {reason}")


class BatchToolError(ImageBuildError):
    """A non-interactive tool returned a failure exit code."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        msg = f"Command failed ({' '.join(self.command)}) with code {returncode}"
        if output:
            msg += f": {output}"
        super().__init__(msg)


class ImageFileError(ImageBuildError):
    """Padding or splicing an output file failed."""

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message)
