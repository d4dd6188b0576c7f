"""Inject a host directory tree into an image through a debugfs session.

The walk works on the physical tree: symlinks are never followed when
deciding what to descend into. Per entry:

    directory       -> created in the image (empty ones too), then walked
    regular file    -> parent verified, then ``write <host path> <name>``
    symlink         -> logged as "target -> link", not transferred
    anything else   -> warning, skipped

Names holding a line break cannot be sent on the shell's command line and
are skipped as well. Other bytes, undecodable ones included, pass through
unchanged.

Skipped entries never abort the walk. Protocol failures do.
"""

from __future__ import annotations

import os
import posixpath
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ext_image_builder.logging import get_logger
from ext_image_builder.storage.exceptions import PathError, SkippableEntryError

from .session import write_command
from .verifier import DirectoryVerifier, normalize_image_path

if TYPE_CHECKING:
    from loguru import Logger


@dataclass
class InjectionResult:
    files: int = 0
    directories: int = 0
    symlinks: int = 0
    skipped: list[SkippableEntryError] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{self.files} files, {self.directories} directories, "
            f"{self.symlinks} symlinks not transferred, {len(self.skipped)} skipped"
        )


@dataclass
class WalkContext:
    """Everything one walk needs, passed explicitly down the recursion."""

    session: object
    verifier: DirectoryVerifier
    source_root: Path
    target_prefix: str
    log: Logger
    result: InjectionResult = field(default_factory=InjectionResult)

    def target_for(self, source_path: Path) -> str:
        """In-image path for a host path below ``source_root``."""
        relative = source_path.relative_to(self.source_root).as_posix()
        if relative == ".":
            return normalize_image_path(self.target_prefix)
        return normalize_image_path(posixpath.join(self.target_prefix, relative))

    def skip(self, path: Path, reason: str) -> None:
        entry = SkippableEntryError(str(path), reason)
        self.result.skipped.append(entry)
        self.log.warning(str(entry))


# The shell reads one command per line
LINE_BREAKS = ("\n", "\r")


def has_line_break(*names: str) -> bool:
    return any(char in name for name in names for char in LINE_BREAKS)


def write_file(context: WalkContext, source_path: Path, target: str) -> None:
    """Write one regular file to ``target`` (full in-image path)."""
    if not os.access(source_path, os.R_OK):
        context.skip(source_path, "file is not readable")
        return
    if has_line_break(str(source_path.absolute()), target):
        context.skip(source_path, "name contains a line break")
        return
    parent, leaf = posixpath.split(target)
    if not leaf:
        context.skip(source_path, f"no file name in target {target}")
        return
    try:
        context.verifier.ensure_directory(parent or "/")
    except PathError as error:
        context.skip(source_path, str(error))
        return
    response = context.session.execute(
        write_command(str(source_path.absolute()), leaf)
    )
    context.log.debug("write {} -> {}", source_path, target)
    context.log.trace("write response: {!r}", response)
    context.result.files += 1


def visit_entry(context: WalkContext, entry: os.DirEntry) -> None:
    path = Path(entry.path)
    try:
        mode = entry.stat(follow_symlinks=False).st_mode
    except OSError as error:
        context.skip(path, f"cannot stat: {error.strerror or error}")
        return

    if stat.S_ISLNK(mode):
        try:
            link_target = os.readlink(path)
        except OSError as error:
            context.skip(path, f"cannot read link: {error.strerror or error}")
            return
        if not path.exists():
            context.skip(path, f"dangling symlink to {link_target}")
            return
        context.log.info("{} -> {}", link_target, path)
        context.result.symlinks += 1
        return

    if stat.S_ISDIR(mode):
        target = context.target_for(path)
        if has_line_break(target):
            context.skip(path, "name contains a line break")
            return
        try:
            context.verifier.ensure_directory(target)
        except PathError as error:
            context.skip(path, str(error))
            return
        context.result.directories += 1
        walk_directory(context, path)
        return

    if stat.S_ISREG(mode):
        write_file(context, path, context.target_for(path))
        return

    if stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
        reason = "device node"
    elif stat.S_ISFIFO(mode):
        reason = "FIFO"
    elif stat.S_ISSOCK(mode):
        reason = "socket"
    else:
        reason = f"unknown file type {stat.S_IFMT(mode):o}"
    context.skip(path, f"{reason} not supported")


def walk_directory(context: WalkContext, directory: Path) -> None:
    """Depth-first walk of ``directory``; directories visited before contents."""
    try:
        with os.scandir(directory) as iterator:
            entries = sorted(iterator, key=lambda entry: entry.name)
    except OSError as error:
        context.skip(directory, f"cannot read directory: {error.strerror or error}")
        return
    for entry in entries:
        visit_entry(context, entry)


def inject(
    session,
    source: str | Path,
    target_prefix: str,
    *,
    verifier: Optional[DirectoryVerifier] = None,
    log: Optional[Logger] = None,
) -> InjectionResult:
    """Inject ``source`` into the image open in ``session``.

    A directory is copied below ``target_prefix``. A single regular file is
    written to ``target_prefix`` taken as its full in-image path.

    Returns:
        Counts of what was written and the entries that were skipped

    Raises:
        ProtocolError: The session failed; the image may be partly written
    """
    source_path = Path(source)
    log = log or get_logger(source="debugfs", tags=["inject"])
    context = WalkContext(
        session=session,
        verifier=verifier or DirectoryVerifier(session),
        source_root=source_path,
        target_prefix=normalize_image_path(target_prefix),
        log=log,
    )

    try:
        mode = os.lstat(source_path).st_mode
    except OSError as error:
        context.skip(source_path, f"cannot stat: {error.strerror or error}")
        return context.result

    if stat.S_ISREG(mode):
        write_file(context, source_path, context.target_prefix)
    elif stat.S_ISDIR(mode):
        if has_line_break(context.target_prefix):
            context.skip(source_path, "name contains a line break")
            return context.result
        try:
            context.verifier.ensure_directory(context.target_prefix)
        except PathError as error:
            context.skip(source_path, str(error))
            return context.result
        walk_directory(context, source_path)
    else:
        context.skip(source_path, "source must be a regular file or a directory")

    log.info(
        "Injected {} into {}: {}",
        source_path,
        context.target_prefix,
        context.result.summary(),
    )
    return context.result
