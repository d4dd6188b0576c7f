"""Synchronous invocation of the non-interactive filesystem tools."""

from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import Iterable, Optional, Sequence

from ext_image_builder.logging import get_logger
from ext_image_builder.storage.exceptions import BatchToolError, SpawnError

# e2fsck exit codes above this mean the filesystem is still damaged.
# 1 means errors were corrected, 2 that a reboot would be needed.
E2FSCK_MAX_OK = 2

log = get_logger(source="genimage", tags=["tools"])


def run_command(command: Sequence[str], log=log) -> subprocess.CompletedProcess:
    """Run a tool and return the completed process without checking it."""
    log.debug("cmd: {}", shlex.join(command))
    try:
        result = subprocess.run(list(command), text=True, capture_output=True)
    except OSError as error:
        raise SpawnError(command, str(error)) from error
    if result.stdout:
        log.debug("stdout: {}", result.stdout.strip())
    if result.stderr:
        log.debug("stderr: {}", result.stderr.strip())
    log.debug("Command completed with return code {}", result.returncode)
    return result


def run_checked_command(
    command: Sequence[str], max_ok: int = 0, log=log
) -> subprocess.CompletedProcess:
    """Run a tool and raise BatchToolError if it exits above ``max_ok``."""
    result = run_command(command, log=log)
    if result.returncode < 0 or result.returncode > max_ok:
        stderr = (result.stderr or "").strip()
        stdout = (result.stdout or "").strip()
        raise BatchToolError(command, result.returncode, stderr or stdout)
    return result


def genext2fs_command(
    tool: str,
    root: Path,
    size_in_blocks: int,
    outfile: Path,
    extraargs: str = "",
    inodes: int = 16384,
) -> list[str]:
    return [
        tool,
        "-d",
        str(root),
        f"--size-in-blocks={size_in_blocks}",
        "-i",
        str(inodes),
        str(outfile),
        *shlex.split(extraargs or ""),
    ]


def tune2fs_features_command(tool: str, features: str, outfile: Path) -> list[str]:
    return [tool, "-O", features, str(outfile)]


def tune2fs_label_command(tool: str, label: str, outfile: Path) -> list[str]:
    return [tool, "-L", label, str(outfile)]


def e2fsck_command(tool: str, outfile: Path) -> list[str]:
    # preen, verbose, force, optimise directories
    return [tool, "-pvfD", str(outfile)]


def debugfs_command(tool: str, outfile: Path) -> list[str]:
    return [tool, "-w", str(outfile)]


def run_e2fsck(tool: str, outfile: Path, log=log) -> int:
    """Check ``outfile``; "filesystem modified" counts as success.

    Returns the e2fsck exit status.
    """
    result = run_checked_command(
        e2fsck_command(tool, outfile), max_ok=E2FSCK_MAX_OK, log=log
    )
    if result.returncode:
        log.info("e2fsck corrected the filesystem (exit code {})", result.returncode)
    return result.returncode


def join_features(features: Optional[Iterable[str] | str]) -> str:
    """Normalise a feature list to tune2fs's comma-separated form."""
    if features is None:
        return ""
    if isinstance(features, str):
        features = features.split(",")
    return ",".join(part.strip() for part in features if part and part.strip())
