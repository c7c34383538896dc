import asyncio
from pathlib import Path

import aiofiles.os
import pytest
from PIL import Image

from mediaopt.engine import build_output_path, optimize_image, transform_image
from mediaopt.errors import DecodeError, FileIOError, UnsupportedFormat
from mediaopt.settings import TransformOptions


WEBP_80 = TransformOptions(target_format="webp", quality=80)


def test_jpeg_to_webp_replaces_original(tmp_path, make_image):
    src = make_image(tmp_path / "a.jpg")

    outcome = asyncio.run(transform_image(src, WEBP_80))

    assert outcome.success
    assert outcome.output_path == tmp_path / "a.webp"
    assert not src.exists()
    assert outcome.output_path.stat().st_size > 0
    assert outcome.output_size == outcome.output_path.stat().st_size
    with Image.open(outcome.output_path) as im:
        assert im.format == "WEBP"
        assert im.size == (320, 240)


def test_same_format_overwrites_in_place(tmp_path, make_image):
    src = make_image(tmp_path / "hero.webp")

    out = asyncio.run(optimize_image(src, TransformOptions(target_format="webp", quality=40)))

    assert out == src
    assert src.exists()
    assert [p.name for p in tmp_path.iterdir()] == ["hero.webp"]


def test_corrupt_file_is_left_alone(tmp_path):
    src = tmp_path / "broken.jpg"
    src.write_bytes(b"definitely not a jpeg")

    outcome = asyncio.run(transform_image(src, WEBP_80))

    assert not outcome.success
    assert outcome.output_path == src
    assert isinstance(outcome.error, DecodeError)
    assert outcome.error.kind == "decode"
    assert src.read_bytes() == b"definitely not a jpeg"
    assert not (tmp_path / "broken.webp").exists()


def test_zero_byte_file_is_a_decode_error(tmp_path):
    src = tmp_path / "empty.png"
    src.write_bytes(b"")

    outcome = asyncio.run(transform_image(src, WEBP_80))

    assert outcome.error is not None and outcome.error.kind == "decode"
    assert src.exists()
    assert outcome.saved_bytes == 0


def test_unsupported_extension(tmp_path):
    src = tmp_path / "notes.txt"
    src.write_text("hello")

    outcome = asyncio.run(transform_image(src, WEBP_80))

    assert isinstance(outcome.error, UnsupportedFormat)
    assert src.read_text() == "hello"


def test_write_failure_keeps_original(tmp_path, make_image, monkeypatch):
    src = make_image(tmp_path / "a.png")
    before = src.read_bytes()

    async def broken_replace(*args, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(aiofiles.os, "replace", broken_replace)

    outcome = asyncio.run(transform_image(src, WEBP_80))

    assert isinstance(outcome.error, FileIOError)
    assert outcome.output_path == src
    assert src.read_bytes() == before
    # no temp files or half-written outputs left behind
    assert [p.name for p in tmp_path.iterdir()] == ["a.png"]


def test_resize_fits_box_and_keeps_aspect(tmp_path, make_image):
    src = make_image(tmp_path / "wide.png", size=(400, 200))

    out = asyncio.run(optimize_image(src, TransformOptions(target_format="webp", max_width=100)))

    with Image.open(out) as im:
        assert im.size == (100, 50)


def test_resize_never_upscales(tmp_path, make_image):
    src = make_image(tmp_path / "small.png", size=(120, 80))

    out = asyncio.run(optimize_image(src, TransformOptions(target_format="webp", max_width=1000, max_height=1000)))

    with Image.open(out) as im:
        assert im.size == (120, 80)


def test_transparent_png_to_jpeg_is_flattened(tmp_path, make_image):
    src = make_image(tmp_path / "logo.png", mode="RGBA")

    out = asyncio.run(optimize_image(src, TransformOptions(target_format="jpeg", quality=85)))

    assert out == tmp_path / "logo.jpg"
    with Image.open(out) as im:
        assert im.mode == "RGB"


def test_gif_and_palette_images_convert(tmp_path, make_image):
    gif = make_image(tmp_path / "anim.gif", mode="P")
    pal = make_image(tmp_path / "pal.png", mode="P")

    async def both():
        return await asyncio.gather(transform_image(gif, WEBP_80), transform_image(pal, WEBP_80))

    results = asyncio.run(both())

    assert all(r.success for r in results)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["anim.webp", "pal.webp"]


@pytest.mark.parametrize(
    "name, fmt, expected",
    [
        ("a.jpg", "webp", "a.webp"),
        ("a.jpeg", "jpeg", "a.jpeg"),
        ("a.png", "jpeg", "a.jpg"),
        ("a.WEBP", "webp", "a.WEBP"),
        ("a.gif", "avif", "a.avif"),
    ],
)
def test_build_output_path(name, fmt, expected):
    assert build_output_path(Path("/up") / name, fmt) == Path("/up") / expected


@pytest.mark.parametrize(
    "kwargs",
    [
        {"target_format": "tiff"},
        {"quality": 0},
        {"quality": 101},
        {"max_width": 0},
    ],
)
def test_invalid_options_rejected(kwargs):
    with pytest.raises(ValueError):
        TransformOptions(**kwargs)
