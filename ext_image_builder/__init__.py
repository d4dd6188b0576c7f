"""ext-image-builder: ext2/ext3/ext4 images from declarative configuration."""

from .__version__ import __version__

__all__ = ["__version__"]
