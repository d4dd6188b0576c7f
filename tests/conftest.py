"""
Pytest configuration and shared fixtures for ext-image-builder tests.

This module provides common fixtures and utilities used across all test modules.
"""

import json
import posixpath
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Dict, List
from unittest.mock import Mock

import pytest
from loguru import logger

from ext_image_builder.config.settings import BuildSettings


PROMPT = "debugfs: "
NOT_FOUND = "File not found by ext2_lookup"


# ==============================================================================
# Fake Editing Shell (in-process)
# ==============================================================================


class FakeShellSession:
    """In-memory stand-in for DebugfsSession.

    Keeps a directory set like a small image and answers cd/mkdir/write the
    way debugfs does. Fails the test if a command arrives while another one
    is still being answered.
    """

    prompt = PROMPT

    def __init__(self, existing=("/",), broken=()):
        self.directories = set(existing) | {"/"}
        self.broken = set(broken)  # paths where mkdir silently fails
        self.cwd = "/"
        self.commands: List[str] = []
        self.files: Dict[str, str] = {}
        self.in_flight = False
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self, timeout=None, *, force=False):
        self.closed = True
        return 0

    def execute(self, command: str) -> str:
        assert not self.in_flight, f"{command!r} sent while a command is in flight"
        assert not self.closed, "session already closed"
        self.in_flight = True
        try:
            self.commands.append(command)
            return self._answer(command) + self.prompt
        finally:
            self.in_flight = False

    def _answer(self, command: str) -> str:
        name, *args = shlex.split(command)
        if name == "cd":
            path = posixpath.normpath(posixpath.join(self.cwd, args[0]))
            if path not in self.directories:
                return f"cd: {NOT_FOUND} \n"
            self.cwd = path
            return ""
        if name == "mkdir":
            path = posixpath.normpath(posixpath.join(self.cwd, args[0]))
            if posixpath.dirname(path) not in self.directories:
                return f"mkdir: {NOT_FOUND} \n"
            if path not in self.broken:
                self.directories.add(path)
            return ""
        if name == "write":
            self.files[posixpath.join(self.cwd, args[1])] = args[0]
            return f"Allocated inode: {len(self.files) + 11}\n"
        return f"{name}: Command not found\n"

    def commands_named(self, name: str) -> List[str]:
        return [c for c in self.commands if c.split(" ", 1)[0] == name]


@pytest.fixture
def fake_session() -> FakeShellSession:
    """Fixture providing an empty fake editing shell."""
    return FakeShellSession()


@pytest.fixture
def make_fake_session():
    """Fixture providing the FakeShellSession class for custom setups."""
    return FakeShellSession


# ==============================================================================
# Fake Editing Shell (child process)
# ==============================================================================

# Emulates debugfs over pipes: banner, echoed input, "debugfs:  " prompt.
# argv: mode ("", "garble", "silent", "crash"), state file written on quit.
FAKE_DEBUGFS_SCRIPT = r'''
import io, json, posixpath, shlex, sys

mode = sys.argv[1]
state_path = sys.argv[2]
# file names are raw bytes, keep undecodable ones intact both ways
stdin = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="surrogateescape")
out = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="surrogateescape")

if mode == "crash":
    out.write("Bad magic number in super-block while opening filesystem\n")
    out.flush()
    sys.exit(1)

out.write("debugfs 1.47.0 (5-Feb-2023)\n")
if mode == "silent":
    out.flush()
    stdin.read()
    sys.exit(0)

directories = {"/"}
cwd = "/"
files = {}
commands = []


def prompt():
    out.write("debugfs:  ")
    out.flush()


prompt()
for line in stdin:
    line = line.rstrip("\n")
    commands.append(line)
    if mode == "garble" and len(line) > 1:
        out.write(line[:-1] + "Z \r" + line[-1] + "\n")
    else:
        out.write(line + "\n")
    parts = shlex.split(line)
    name, args = parts[0], parts[1:]
    if name == "quit":
        break
    if name == "cd":
        path = posixpath.normpath(posixpath.join(cwd, args[0]))
        if path in directories:
            cwd = path
        else:
            out.write("cd: File not found by ext2_lookup \n")
    elif name == "mkdir":
        path = posixpath.normpath(posixpath.join(cwd, args[0]))
        if posixpath.dirname(path) in directories:
            directories.add(path)
        else:
            out.write("mkdir: File not found by ext2_lookup \n")
    elif name == "write":
        files[posixpath.join(cwd, args[1])] = args[0]
        out.write("Allocated inode: %d\n" % (len(files) + 11))
    else:
        out.write("debugfs: Command not found %s\n" % name)
    prompt()

with open(state_path, "w") as handle:
    json.dump(
        {"directories": sorted(directories), "files": files, "commands": commands},
        handle,
    )
'''


@pytest.fixture
def fake_debugfs(tmp_path):
    """
    Fixture returning a factory for fake debugfs command lines.

    Returns:
        Callable(mode="") -> (argv, state_path)
    """

    def factory(mode: str = ""):
        state_path = tmp_path / f"debugfs-state{('-' + mode) if mode else ''}.json"
        argv = [sys.executable, "-c", FAKE_DEBUGFS_SCRIPT, mode, str(state_path)]
        return argv, state_path

    return factory


def read_state(state_path: Path) -> dict:
    return json.loads(state_path.read_text(encoding="utf-8"))


@pytest.fixture
def debugfs_state():
    """Fixture providing a reader for the fake shell's state file."""
    return read_state


# ==============================================================================
# Byte Stream Fixtures
# ==============================================================================


class ListReader:
    """ByteStreamReader stand-in serving bytes from memory."""

    def __init__(self, data: bytes):
        self.data = list(data)
        self.bytes_read = 0

    def read_byte(self, deadline=None) -> int:
        from ext_image_builder.storage.exceptions import ProtocolError

        if not self.data:
            raise ProtocolError("Shell closed its output")
        self.bytes_read += 1
        return self.data.pop(0)


@pytest.fixture
def list_reader():
    """Fixture providing a factory for in-memory byte readers."""
    return ListReader


# ==============================================================================
# File System Fixtures
# ==============================================================================


@pytest.fixture
def source_tree(tmp_path_factory) -> Path:
    """
    Fixture providing a source tree with a file, an empty dir and a symlink.

    Layout:
        src/a/b/file1
        src/a/c/          (empty)
        src/a/link -> b/file1
    """
    root = tmp_path_factory.mktemp("tree") / "src"
    (root / "a" / "b").mkdir(parents=True)
    (root / "a" / "c").mkdir()
    (root / "a" / "b" / "file1").write_text("hello\n", encoding="utf-8")
    (root / "a" / "link").symlink_to("b/file1")
    return root


@pytest.fixture
def settings(tmp_path) -> BuildSettings:
    """Fixture providing settings rooted in a temporary directory."""
    return BuildSettings(
        rootpath=tmp_path / "root",
        inputpath=tmp_path / "input",
        outputpath=tmp_path / "images",
        protocol_timeout=10.0,
    )


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


@pytest.fixture
def capture_subprocess_calls(mocker) -> List[List]:
    """
    Fixture that captures all subprocess.run calls for inspection.

    Set ``calls.returncodes`` to a list to script exit codes in order.

    Returns:
        List that will contain all subprocess command arguments.
    """

    class Calls(list):
        returncodes: List[int]

    calls = Calls()
    calls.returncodes = []

    def track_call(cmd, **kwargs):
        calls.append(cmd)
        returncode = calls.returncodes.pop(0) if calls.returncodes else 0
        return subprocess.CompletedProcess(cmd, returncode, stdout="", stderr="")

    mocker.patch(
        "ext_image_builder.storage.tools.subprocess.run", side_effect=track_call
    )
    return calls


@pytest.fixture
def mock_subprocess_run(mocker) -> Mock:
    """
    Fixture providing a mock for subprocess.run in the tool runners.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("ext_image_builder.storage.tools.subprocess.run")


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def log_messages() -> List[str]:
    """
    Fixture capturing every loguru message (TRACE and above) during a test.

    Returns:
        List of formatted messages.
    """
    messages: List[str] = []
    handler_id = logger.add(
        lambda message: messages.append(message.record["message"]), level="TRACE"
    )
    yield messages
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def reset_logging():
    """Restore loguru's default sink after tests that call setup_logging."""
    yield
    logger.remove()
    logger.configure(extra={})
    logger.add(sys.stderr, level="DEBUG")
