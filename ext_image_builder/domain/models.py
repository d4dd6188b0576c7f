"""Domain model for filesystem image builds.

Type-safe objects built once from the configuration and passed, unchanged,
to the batch orchestrator and the tree injector.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


# ==============================================================================
# Filesystem Types
# ==============================================================================


class FilesystemType(Enum):
    """Supported image types."""

    EXT2 = "ext2"
    EXT3 = "ext3"
    EXT4 = "ext4"

    @property
    def default_features(self) -> Optional[str]:
        """Features applied with tune2fs when the image sets none."""
        return DEFAULT_FEATURES[self]

    @classmethod
    def from_name(cls, name: str) -> FilesystemType:
        """Parse a type name such as ``"ext4"``.

        Raises:
            ValueError: If the name is not a supported type
        """
        try:
            return cls(name.strip().lower())
        except ValueError:
            supported = ", ".join(member.value for member in cls)
            raise ValueError(
                f"Unsupported image type {name!r} (expected one of: {supported})"
            ) from None


DEFAULT_FEATURES: dict[FilesystemType, Optional[str]] = {
    FilesystemType.EXT2: None,
    FilesystemType.EXT3: "has_journal",
    FilesystemType.EXT4: "extents,uninit_bg,dir_index,has_journal",
}


# ==============================================================================
# Image Domain
# ==============================================================================


@dataclass(frozen=True)
class Partition:
    """One source-to-target mapping injected into an existing image.

    Not a partition table entry: ``name`` is the path inside the image
    (empty means the image root) and ``image`` names the source file or
    directory on the host.
    """

    name: str
    image: str

    @property
    def target(self) -> str:
        """In-image target path, ``/`` for the image root."""
        if not self.name:
            return "/"
        return self.name if self.name.startswith("/") else f"/{self.name}"


@dataclass(frozen=True)
class ImageSpec:
    """An image to build, as described by one configuration entry."""

    file: str  # Output file name (e.g., "root.ext4")
    fs_type: FilesystemType
    size_bytes: int
    outfile: Path  # Output file path
    mountpath: Path  # Directory tree used for full regeneration
    extraargs: str = ""
    features: Optional[str] = None
    label: Optional[str] = None
    partitions: tuple[Partition, ...] = field(default_factory=tuple)

    @property
    def size_in_blocks(self) -> int:
        """Image size in 1 KiB blocks, as genext2fs expects it."""
        return self.size_bytes // 1024

    @property
    def is_incremental(self) -> bool:
        """True when the image is edited in place instead of regenerated."""
        return bool(self.partitions)

    def format_label(self) -> str:
        """Human-readable label, e.g. ``ext4(root.ext4)``."""
        return f"{self.fs_type.value}({self.file})"
