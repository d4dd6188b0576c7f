"""Build settings: tool executables, paths and protocol limits."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from ext_image_builder.storage.debugfs.session import (
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_PROMPT,
    DEFAULT_TIMEOUT,
)
from ext_image_builder.storage.exceptions import ConfigError

ENV_PREFIX = "EXT_IMAGE_BUILDER_"

CONFIG_PATH_ENV = f"{ENV_PREFIX}CONFIG"
DEFAULT_CONFIG_PATH = Path("genimage.json")


@dataclass(frozen=True)
class BuildSettings:
    genext2fs: str = "genext2fs"
    tune2fs: str = "tune2fs"
    e2fsck: str = "e2fsck"
    debugfs: str = "debugfs"
    rootpath: Path = Path("root")
    inputpath: Path = Path("input")
    outputpath: Path = Path("images")
    loglevel: int = 1
    protocol_timeout: Optional[float] = DEFAULT_TIMEOUT
    close_timeout: float = DEFAULT_CLOSE_TIMEOUT
    prompt: str = DEFAULT_PROMPT

    def resolve_input(self, source: str) -> Path:
        """Host path of a partition source, relative ones below ``inputpath``."""
        path = Path(source).expanduser()
        if path.is_absolute():
            return path
        return self.inputpath / path

    def mountpath(self, mountpoint: str) -> Path:
        """Directory tree holding the content of ``mountpoint``."""
        return self.rootpath / mountpoint.strip().lstrip("/")


_PATH_FIELDS = {"rootpath", "inputpath", "outputpath"}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    try:
        if name in _PATH_FIELDS:
            return Path(str(value)).expanduser()
        if name == "loglevel":
            return int(value)
        if name in ("protocol_timeout", "close_timeout"):
            timeout = float(value)
            if name == "protocol_timeout" and timeout <= 0:
                return None
            return timeout
    except (TypeError, ValueError) as error:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from error
    return str(value)


def load_settings(
    config_data: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BuildSettings:
    """Build settings from, in increasing priority: defaults, the config
    file's ``config`` section, ``EXT_IMAGE_BUILDER_<NAME>`` environment
    variables and explicit overrides (command line).

    A ``protocol_timeout`` of 0 or less disables the protocol timeout.
    """
    environ = os.environ if environ is None else environ
    names = {field.name for field in fields(BuildSettings)}
    values: dict[str, Any] = {}

    for key, value in (config_data or {}).items():
        if key not in names:
            raise ConfigError(f"Unknown config option: {key}")
        values[key] = _coerce(key, value)

    for name in names:
        env_value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if env_value:
            values[name] = _coerce(name, env_value)

    for key, value in (overrides or {}).items():
        if key in names and value is not None:
            values[key] = _coerce(key, value)

    return replace(BuildSettings(), **values)
