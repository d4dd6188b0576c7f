"""ext2/ext3/ext4 image generation.

Two ways to produce an image:

    full:         genext2fs from the mount directory tree, tune2fs for
                  features and label, then e2fsck
    incremental:  the image already exists and every configured partition
                  is injected into it through debugfs

An image with at least one partition is always built incrementally; the
full pipeline, including the consistency check, is skipped for it.

Example:
    >>> handler = get_handler(FilesystemType.EXT4)
    >>> handler.generate(image, settings)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from ext_image_builder.domain.models import FilesystemType, ImageSpec, Partition
from ext_image_builder.logging import LoggerFactory, operation_context
from ext_image_builder.storage.debugfs import DebugfsSession, InjectionResult, inject
from ext_image_builder.storage.exceptions import ConfigError, ImageBuildError
from ext_image_builder.storage.tools import (
    debugfs_command,
    genext2fs_command,
    run_checked_command,
    run_e2fsck,
    tune2fs_features_command,
    tune2fs_label_command,
)

if TYPE_CHECKING:
    from loguru import Logger

    from ext_image_builder.config.settings import BuildSettings


# ==============================================================================
# Configuration parsing
# ==============================================================================


def parse_partitions(raw: Mapping[str, Any]) -> tuple[Partition, ...]:
    """Partitions of one image entry, in configuration order.

    Each ``file`` section names an in-image path and its source; each
    ``files`` entry is injected at the image root.
    """
    partitions: list[Partition] = []

    sections = raw.get("file") or []
    if isinstance(sections, Mapping):
        sections = [sections]
    for section in sections:
        if not isinstance(section, Mapping):
            raise ConfigError("'file' entries must be objects")
        source = section.get("image")
        if not source or not isinstance(source, str):
            raise ConfigError(f"file {section.get('name', '')!r} has no 'image'")
        name = str(section.get("name") or "").strip()
        partitions.append(Partition(name=name, image=source))

    files = raw.get("files") or []
    if isinstance(files, str):
        files = [files]
    for source in files:
        if not isinstance(source, str):
            raise ConfigError("'files' entries must be strings")
        partitions.append(Partition(name="", image=source))

    return tuple(partitions)


# ==============================================================================
# Generation
# ==============================================================================


def partition_target(partition: Partition, source: Path) -> str:
    """In-image target of a partition.

    A file source without an explicit name lands at the image root under
    its own file name.
    """
    if not partition.name and not source.is_dir():
        return f"/{source.name}"
    return partition.target


def inject_partitions(
    image: ImageSpec, settings: BuildSettings, log: Optional[Logger] = None
) -> list[InjectionResult]:
    """Inject every partition of ``image``, one debugfs session each."""
    log = log or LoggerFactory.for_image(image)
    if not image.outfile.is_file():
        raise ImageBuildError(
            f"{image.outfile} does not exist, cannot inject files incrementally"
        )

    results = []
    for partition in image.partitions:
        source = settings.resolve_input(partition.image)
        target = partition_target(partition, source)
        with operation_context(
            "inject", log=log, source_path=str(source), target=target
        ), DebugfsSession.open(
            debugfs_command(settings.debugfs, image.outfile),
            prompt=settings.prompt,
            timeout=settings.protocol_timeout,
            close_timeout=settings.close_timeout,
            log=LoggerFactory.for_debugfs(image.file),
        ) as session:
            results.append(inject(session, source, target, log=log))
    return results


def build_full(
    image: ImageSpec, settings: BuildSettings, log: Optional[Logger] = None
) -> None:
    """Regenerate ``image`` from its mount directory tree."""
    log = log or LoggerFactory.for_image(image)
    image.outfile.parent.mkdir(parents=True, exist_ok=True)

    run_checked_command(
        genext2fs_command(
            settings.genext2fs,
            image.mountpath,
            image.size_in_blocks,
            image.outfile,
            image.extraargs,
        ),
        log=log,
    )

    if image.features:
        run_checked_command(
            tune2fs_features_command(settings.tune2fs, image.features, image.outfile),
            log=log,
        )
    if image.label:
        run_checked_command(
            tune2fs_label_command(settings.tune2fs, image.label, image.outfile),
            log=log,
        )

    run_e2fsck(settings.e2fsck, image.outfile, log=log)


def generate(image: ImageSpec, settings: BuildSettings) -> None:
    """Produce ``image``, incrementally when it lists partitions."""
    log = LoggerFactory.for_image(image)
    if image.is_incremental:
        log.info(
            "Injecting {} partition(s) into existing image", len(image.partitions)
        )
        inject_partitions(image, settings, log=log)
        return
    log.info("Generating from {}", image.mountpath)
    build_full(image, settings, log=log)


# ==============================================================================
# Handlers
# ==============================================================================


@dataclass(frozen=True)
class ImageHandler:
    fs_type: FilesystemType
    generate: Callable[[ImageSpec, BuildSettings], None]
    parse: Callable[[Mapping[str, Any]], tuple[Partition, ...]]


HANDLERS: dict[FilesystemType, ImageHandler] = {
    fs_type: ImageHandler(fs_type=fs_type, generate=generate, parse=parse_partitions)
    for fs_type in FilesystemType
}


def get_handler(fs_type: FilesystemType) -> ImageHandler:
    return HANDLERS[fs_type]
