"""Module entrypoint for `python -m ext_image_builder`."""

from .main import main

if __name__ == "__main__":
    raise SystemExit(main())
