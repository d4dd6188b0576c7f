"""Tests for file padding and splicing helpers."""

import pytest

from ext_image_builder.storage.exceptions import ImageFileError
from ext_image_builder.storage.file_utils import (
    CHUNK_SIZE,
    PadMode,
    insert_data,
    pad_file,
    parse_size,
)


class TestParseSize:
    """Tests for parse_size function."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (512, 512),
            ("512", 512),
            ("4k", 4096),
            ("4K", 4096),
            ("64M", 64 * 1024**2),
            ("2G", 2 * 1024**3),
            ("0x1000", 4096),
            ("0x10K", 16 * 1024),
            (" 8 M ", 8 * 1024**2),
        ],
    )
    def test_valid(self, value, expected):
        assert parse_size(value) == expected

    @pytest.mark.parametrize("value", ["", "M", "12T", "1.5M", "-1", "0x"])
    def test_invalid(self, value):
        with pytest.raises(ValueError, match="Invalid size"):
            parse_size(value)


class TestPadFile:
    """Tests for pad_file function."""

    def test_copy_and_fill(self, tmp_path):
        infile = tmp_path / "in.bin"
        infile.write_bytes(b"abc")
        outfile = tmp_path / "out.bin"

        pad_file(infile, outfile, 8)

        assert outfile.read_bytes() == b"abc" + b"\xff" * 5

    def test_custom_fill_pattern(self, tmp_path):
        infile = tmp_path / "in.bin"
        infile.write_bytes(b"a")
        outfile = tmp_path / "out.bin"

        pad_file(infile, outfile, 3, fillpattern=0)

        assert outfile.read_bytes() == b"a\0\0"

    def test_overwrite_replaces_existing_output(self, tmp_path):
        infile = tmp_path / "in.bin"
        infile.write_bytes(b"new")
        outfile = tmp_path / "out.bin"
        outfile.write_bytes(b"old content")

        pad_file(infile, outfile, 4)

        assert outfile.read_bytes() == b"new\xff"

    def test_append(self, tmp_path):
        infile = tmp_path / "in.bin"
        infile.write_bytes(b"xy")
        outfile = tmp_path / "out.bin"
        outfile.write_bytes(b"head")

        pad_file(infile, outfile, 4, mode=PadMode.APPEND)

        assert outfile.read_bytes() == b"headxy\xff\xff"

    def test_pad_existing_output_in_place(self, tmp_path):
        outfile = tmp_path / "out.bin"
        outfile.write_bytes(b"12")

        pad_file(None, outfile, 5)

        assert outfile.read_bytes() == b"12\xff\xff\xff"

    def test_larger_than_one_chunk(self, tmp_path):
        infile = tmp_path / "in.bin"
        infile.write_bytes(b"z" * (CHUNK_SIZE + 10))
        outfile = tmp_path / "out.bin"

        pad_file(infile, outfile, CHUNK_SIZE * 3)

        data = outfile.read_bytes()
        assert len(data) == CHUNK_SIZE * 3
        assert data[: CHUNK_SIZE + 10] == b"z" * (CHUNK_SIZE + 10)
        assert set(data[CHUNK_SIZE + 10 :]) == {0xFF}

    def test_input_too_large(self, tmp_path):
        infile = tmp_path / "in.bin"
        infile.write_bytes(b"toolong")

        with pytest.raises(ImageFileError, match="too large") as excinfo:
            pad_file(infile, tmp_path / "out.bin", 3)

        assert excinfo.value.path == str(infile)

    def test_output_already_larger(self, tmp_path):
        outfile = tmp_path / "out.bin"
        outfile.write_bytes(b"123456")

        with pytest.raises(ImageFileError, match="already larger"):
            pad_file(None, outfile, 2)

    def test_missing_input(self, tmp_path):
        with pytest.raises(ImageFileError, match="open"):
            pad_file(tmp_path / "absent", tmp_path / "out.bin", 4)

    def test_missing_output_without_input(self, tmp_path):
        with pytest.raises(ImageFileError, match="stat"):
            pad_file(None, tmp_path / "absent", 4)


class TestInsertData:
    """Tests for insert_data function."""

    def test_overwrites_at_offset(self, tmp_path):
        outfile = tmp_path / "disk.img"
        outfile.write_bytes(b"\0" * 8)

        insert_data(b"MBR", outfile, 2)

        assert outfile.read_bytes() == b"\0\0MBR\0\0\0"

    def test_creates_file(self, tmp_path):
        outfile = tmp_path / "new.img"

        insert_data(b"x", outfile, 3)

        assert outfile.read_bytes() == b"\0\0\0x"

    def test_unwritable_target(self, tmp_path):
        with pytest.raises(ImageFileError, match="write"):
            insert_data(b"x", tmp_path / "no" / "such" / "dir.img", 0)
