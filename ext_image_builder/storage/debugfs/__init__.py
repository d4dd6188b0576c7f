"""Incremental image editing through the debugfs interactive shell.

This package drives ``debugfs -w`` over its prompt protocol to inject files
and directories into an existing ext2/3/4 image without regenerating it.

Layers, leaves first:
    - ByteStreamReader: unbuffered byte reads with a deadline
    - PromptMatcher / read_until(): marker scan over the raw output
    - DebugfsSession: spawn, execute one command at a time, close
    - DirectoryVerifier: cached cd/mkdir directory creation
    - inject(): physical depth-first walk of a host tree
"""

from .injector import InjectionResult, WalkContext, inject, walk_directory
from .matcher import (
    EchoedPromptFraming,
    PromptMatcher,
    PromptOnlyFraming,
    ResponseFraming,
    read_until,
)
from .session import (
    DEFAULT_PROMPT,
    NOT_FOUND_MARKERS,
    CommandChannel,
    DebugfsSession,
    cd_command,
    is_not_found,
    mkdir_command,
    quote_argument,
    write_command,
)
from .stream import ByteStreamReader
from .verifier import DirectoryVerifier, normalize_image_path

__all__ = [
    "ByteStreamReader",
    "CommandChannel",
    "DEFAULT_PROMPT",
    "DebugfsSession",
    "DirectoryVerifier",
    "EchoedPromptFraming",
    "InjectionResult",
    "NOT_FOUND_MARKERS",
    "PromptMatcher",
    "PromptOnlyFraming",
    "ResponseFraming",
    "WalkContext",
    "cd_command",
    "inject",
    "is_not_found",
    "mkdir_command",
    "normalize_image_path",
    "quote_argument",
    "read_until",
    "walk_directory",
    "write_command",
]
