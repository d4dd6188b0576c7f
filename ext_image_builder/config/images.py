"""Image configuration parsing.

The configuration file is JSON:

    {
        "config": {"rootpath": "root", "outputpath": "images"},
        "images": [
            {
                "name": "root.ext4",
                "type": "ext4",
                "size": "64M",
                "mountpoint": "/",
                "label": "myroot",
                "file": [{"name": "/etc/motd", "image": "motd"}],
                "files": ["overlay"]
            }
        ]
    }

Only the fields needed to build the in-memory image list are checked.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

from ext_image_builder.config.settings import BuildSettings
from ext_image_builder.domain.models import FilesystemType, ImageSpec
from ext_image_builder.storage.ext2 import get_handler
from ext_image_builder.storage.exceptions import ConfigError
from ext_image_builder.storage.file_utils import parse_size
from ext_image_builder.storage.tools import join_features


def load_config(path: str | Path) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Read a configuration file.

    Returns:
        The ``config`` section and the raw ``images`` list
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise ConfigError(f"Cannot read config {path}: {error.strerror}") from error
    except json.JSONDecodeError as error:
        raise ConfigError(f"Cannot parse config {path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a JSON object")
    config = data.get("config") or {}
    images = data.get("images") or []
    if not isinstance(config, dict):
        raise ConfigError("'config' must be an object")
    if not isinstance(images, list) or not all(isinstance(i, dict) for i in images):
        raise ConfigError("'images' must be a list of objects")
    return config, images


def _optional_str(raw: Mapping[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"'{key}' must be a string")
    return value


def parse_image(raw: Mapping[str, Any], settings: BuildSettings) -> ImageSpec:
    """Turn one ``images`` entry into an ImageSpec."""
    name = raw.get("name")
    if not name or not isinstance(name, str):
        raise ConfigError("Image entry without a 'name'")

    try:
        fs_type = FilesystemType.from_name(str(raw.get("type", "")))
    except ValueError as error:
        raise ConfigError(f"{name}: {error}") from None

    try:
        size_bytes = parse_size(raw.get("size", 0))
    except ValueError as error:
        raise ConfigError(f"{name}: {error}") from None

    features = _optional_str(raw, "features")
    if features is None:
        features = fs_type.default_features

    handler = get_handler(fs_type)
    partitions = handler.parse(raw)

    return ImageSpec(
        file=name,
        fs_type=fs_type,
        size_bytes=size_bytes,
        outfile=settings.outputpath / name,
        mountpath=settings.mountpath(_optional_str(raw, "mountpoint") or "/"),
        extraargs=_optional_str(raw, "extraargs") or "",
        features=join_features(features) or None,
        label=_optional_str(raw, "label") or None,
        partitions=partitions,
    )


def parse_images(
    raw_images: list[Mapping[str, Any]], settings: BuildSettings
) -> list[ImageSpec]:
    """Parse every image entry, in configuration order."""
    return [parse_image(raw, settings) for raw in raw_images]
