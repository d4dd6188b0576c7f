import argparse
import os
from pathlib import Path

from ext_image_builder.config.images import load_config, parse_images
from ext_image_builder.config.settings import (
    CONFIG_PATH_ENV,
    DEFAULT_CONFIG_PATH,
    load_settings,
)
from ext_image_builder.logging import DEFAULT_LOGLEVEL, LoggerFactory, setup_logging
from ext_image_builder.storage.exceptions import ConfigError, ImageBuildError
from ext_image_builder.storage.ext2 import get_handler


def build_parser():
    parser = argparse.ArgumentParser(
        prog="ext-image-builder",
        description="Build ext2/ext3/ext4 images from a configuration file",
    )
    parser.add_argument(
        "-c",
        "--config",
        help=f"Configuration file (default: ${CONFIG_PATH_ENV} or {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--rootpath", help="Directory holding the mount point trees")
    parser.add_argument("--inputpath", help="Directory for relative partition sources")
    parser.add_argument("--outputpath", help="Directory for generated images")
    parser.add_argument("--loglevel", type=int, help="0=warnings, 1=info, 2=commands, 3=protocol")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--log-dir", type=Path, help="Also write build.log to this directory")
    parser.add_argument(
        "--timeout",
        dest="protocol_timeout",
        type=float,
        help="Seconds to wait for each debugfs response (0 waits forever)",
    )
    for tool in ("genext2fs", "tune2fs", "e2fsck", "debugfs"):
        parser.add_argument(f"--{tool}", help=f"{tool} executable")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        loglevel=args.loglevel if args.loglevel is not None else DEFAULT_LOGLEVEL,
        debug=args.debug,
        log_dir=args.log_dir,
    )
    log = LoggerFactory.for_system()

    config_path = Path(
        args.config or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    )
    overrides = {
        name: getattr(args, name)
        for name in (
            "rootpath",
            "inputpath",
            "outputpath",
            "loglevel",
            "protocol_timeout",
            "genext2fs",
            "tune2fs",
            "e2fsck",
            "debugfs",
        )
    }
    try:
        config_data, raw_images = load_config(config_path)
        settings = load_settings(config_data, overrides)
        # Final log level may come from the config file
        setup_logging(loglevel=settings.loglevel, debug=args.debug, log_dir=args.log_dir)
        images = parse_images(raw_images, settings)
    except ConfigError as error:
        log.error("{}", error)
        return 1

    if not images:
        log.warning("No images configured in {}", config_path)
        return 0

    for image in images:
        try:
            get_handler(image.fs_type).generate(image, settings)
        except (ImageBuildError, OSError) as error:
            LoggerFactory.for_image(image).error("{}", error)
            return 1

    log.info("Built {} image(s)", len(images))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
