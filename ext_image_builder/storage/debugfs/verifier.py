"""Make sure a directory exists inside the image before writing into it.

The shell has no "does this directory exist" command, so existence is
probed with ``cd``: walking backward from the target, the first ancestor
whose ``cd`` does not answer "not found" exists. Everything below it is
created with one ``mkdir`` per path segment. Directories confirmed during
the session are cached so repeated targets cost no probes.

"Not found" detection is a substring match on free-form shell output. Any
other failure of ``cd`` is read as "does not exist", so a later ``mkdir``
over a non-directory entry is only caught by the final ``cd`` check.
"""

from __future__ import annotations

import posixpath
from typing import Optional, Sequence

from ext_image_builder.storage.exceptions import PathError

from .session import NOT_FOUND_MARKERS, cd_command, is_not_found, mkdir_command


def normalize_image_path(path: str) -> str:
    """Absolute, normalised POSIX path inside the image.

    Whitespace is part of a file name and is kept.
    """
    path = posixpath.normpath("/" + path.lstrip("/"))
    # normpath keeps a leading "//"
    return "/" + path.lstrip("/")


def ancestors(path: str) -> list[str]:
    """``path`` followed by its ancestors, innermost first, without ``/``."""
    chain = []
    while path != "/":
        chain.append(path)
        path = posixpath.dirname(path)
    return chain


class DirectoryVerifier:
    """Per-session cache of directories known to exist in the image."""

    def __init__(self, session, not_found_markers: Sequence[str] = NOT_FOUND_MARKERS):
        self.session = session
        self.not_found_markers = tuple(not_found_markers)
        self.cursor = "/"  # deepest directory confirmed most recently
        self.cwd: Optional[str] = None
        self.known: set[str] = {"/"}
        self.probes = 0
        self.mkdirs = 0

    def _remember(self, path: str) -> None:
        self.known.update(ancestors(path))
        self.cursor = path

    def _cd(self, path: str) -> bool:
        response = self.session.execute(cd_command(path))
        if is_not_found(response, self.not_found_markers):
            return False
        self.cwd = path
        return True

    def ensure_directory(self, path: str) -> str:
        """Create any missing part of ``path`` and make it the working directory.

        Returns the normalised path.

        Raises:
            PathError: The directory still cannot be entered after creation
        """
        path = normalize_image_path(path)
        if path in self.known:
            if self.cwd != path and not self._cd(path):
                raise PathError(path)
            self.cursor = path
            return path

        # Backward probe, innermost first
        chain = ancestors(path)
        existing = "/"
        missing: list[str] = []
        for candidate in chain:
            if candidate in self.known:
                existing = candidate
                break
            self.probes += 1
            if self._cd(candidate):
                existing = candidate
                break
            missing.append(candidate)

        self._remember(existing)

        # Forward create, outermost first
        for directory in reversed(missing):
            self.session.execute(mkdir_command(directory))
            self.mkdirs += 1

        if missing or self.cwd != path:
            response = self.session.execute(cd_command(path))
            if is_not_found(response, self.not_found_markers):
                raise PathError(path, response)
            self.cwd = path

        self._remember(path)
        return path
