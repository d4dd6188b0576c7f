"""Domain models for filesystem image builds."""

from __future__ import annotations

from .models import (
    DEFAULT_FEATURES,
    FilesystemType,
    ImageSpec,
    Partition,
)


__all__ = [
    "DEFAULT_FEATURES",
    "FilesystemType",
    "ImageSpec",
    "Partition",
]
