"""Interactive debugfs session: one child process, strict request/response.

Example:
    >>> with DebugfsSession.open(["debugfs", "-w", "root.ext4"]) as session:
    ...     session.execute(mkdir_command("/etc"))
"""

from __future__ import annotations

import contextlib
import os
import subprocess
from typing import Optional, Sequence

from ext_image_builder.logging import LoggerFactory
from ext_image_builder.storage.exceptions import ProtocolError, SpawnError

from .matcher import EchoedPromptFraming, ResponseFraming, read_until
from .stream import ByteStreamReader

DEFAULT_PROMPT = "debugfs: "
DEFAULT_TIMEOUT = 30.0
DEFAULT_CLOSE_TIMEOUT = 10.0

# Markers in a response meaning the path does not exist
NOT_FOUND_MARKERS = ("not found", "No such file or directory")


def quote_argument(argument: str) -> str:
    """Quote one argument for the debugfs command parser.

    Arguments with whitespace or double quotes are wrapped in double quotes,
    with embedded quotes doubled.
    """
    if argument and not any(char.isspace() or char == '"' for char in argument):
        return argument
    return '"' + argument.replace('"', '""') + '"'


def build_command(name: str, *arguments: str) -> str:
    return " ".join([name, *(quote_argument(argument) for argument in arguments)])


def cd_command(path: str) -> str:
    return build_command("cd", path)


def mkdir_command(path: str) -> str:
    return build_command("mkdir", path)


def write_command(host_path: str, image_name: str) -> str:
    return build_command("write", host_path, image_name)


def quit_command() -> str:
    return "quit"


def is_not_found(response: str, markers: Sequence[str] = NOT_FOUND_MARKERS) -> bool:
    """True when a response reports a missing path (substring match)."""
    lowered = response.lower()
    return any(marker.lower() in lowered for marker in markers)


class CommandChannel:
    """Write side of the session: one command line per call."""

    def __init__(self, stream):
        self.stream = stream

    def send(self, command: str) -> None:
        if "\n" in command:
            raise ValueError(f"Command must be a single line: {command!r}")
        # host paths may hold undecodable bytes, send them back unchanged
        line = os.fsencode(command) + b"\n"
        try:
            self.stream.write(line)
            self.stream.flush()
        except (BrokenPipeError, ValueError, OSError) as error:
            raise ProtocolError(f"Failed to send {command!r}: {error}") from error


class DebugfsSession:
    """A spawned editing shell driven one command at a time.

    Commands are never pipelined: ``execute`` sends a line and returns only
    after the response has been read up to the next idle prompt.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        *,
        prompt: str = DEFAULT_PROMPT,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        framing: Optional[ResponseFraming] = None,
        log=None,
    ):
        if process.stdin is None or process.stdout is None:
            raise ValueError("Session process needs stdin and stdout pipes")
        self.process = process
        self.prompt = prompt
        self.timeout = timeout
        self.close_timeout = close_timeout
        self.framing = framing or EchoedPromptFraming()
        self.channel = CommandChannel(process.stdin)
        self.reader = ByteStreamReader.from_file(process.stdout)
        self.log = log or LoggerFactory.for_debugfs()
        self.commands_sent = 0
        self.returncode: Optional[int] = None
        self._in_flight = False
        self._broken = False
        self._closed = False

    @classmethod
    def open(
        cls,
        command: Sequence[str],
        *,
        prompt: str = DEFAULT_PROMPT,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        framing: Optional[ResponseFraming] = None,
        log=None,
    ) -> DebugfsSession:
        """Spawn ``command`` and wait for its first idle prompt.

        Raises:
            SpawnError: The process could not be started
            ProtocolError: The first prompt never appeared
        """
        log = log or LoggerFactory.for_debugfs()
        log.debug("cmd: {}", " ".join(command))
        try:
            process = subprocess.Popen(
                list(command),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                bufsize=0,
            )
        except OSError as error:
            raise SpawnError(command, str(error)) from error

        session = cls(
            process,
            prompt=prompt,
            timeout=timeout,
            close_timeout=close_timeout,
            framing=framing,
            log=log,
        )
        try:
            read_until(session.reader, prompt, timeout, log=log)
        except ProtocolError:
            session.close(force=True)
            raise
        return session

    def __enter__(self) -> DebugfsSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(force=exc_type is not None)

    @property
    def is_open(self) -> bool:
        return not self._closed

    def execute(self, command: str) -> str:
        """Send one command and return its response up to the next prompt.

        Raises:
            ProtocolError: The session is closed, busy or out of sync, or
                the prompt did not come back in time
        """
        if self._closed:
            raise ProtocolError(f"Session is closed, cannot run {command!r}")
        if self._broken:
            raise ProtocolError(f"Session is out of sync, cannot run {command!r}")
        if self._in_flight:
            raise ProtocolError(
                f"Command {command!r} sent while another command is in flight"
            )

        self._in_flight = True
        try:
            self.log.trace("> {}", command)
            self.channel.send(command)
            self.commands_sent += 1
            response = self.framing.read_response(
                self.reader, command, self.prompt, self.timeout
            )
        except ProtocolError:
            self._broken = True
            raise
        finally:
            self._in_flight = False
        self.log.trace("< {!r}", response)
        return response

    def close(
        self, timeout: Optional[float] = None, *, force: bool = False
    ) -> Optional[int]:
        """Quit the shell, reap it and release both pipes.

        Returns the child's exit status. Safe to call more than once.
        """
        if self._closed:
            return self.returncode
        self._closed = True

        process = self.process
        if not force and not self._broken and process.poll() is None:
            # quit's response is not needed, the shell exits
            with contextlib.suppress(ProtocolError):
                self.channel.send(quit_command())

        with contextlib.suppress(OSError):
            process.stdin.close()

        try:
            process.wait(timeout=0 if force else (timeout or self.close_timeout))
        except subprocess.TimeoutExpired:
            process.terminate()
            try:
                process.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait(timeout=2.0)

        with contextlib.suppress(OSError):
            process.stdout.close()

        self.returncode = process.returncode
        self.log.debug(
            "Shell exited with code {} after {} commands",
            self.returncode,
            self.commands_sent,
        )
        return self.returncode
