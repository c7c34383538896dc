from __future__ import annotations

from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from mediaopt.settings import PipelineConfig


def _photo(size: tuple[int, int], noise: float) -> Image.Image:
    """Gradient with some grain, close enough to a photo for the encoders."""
    w, h = size
    grad = Image.linear_gradient("L").resize((w, h))
    if noise <= 0:
        return Image.merge("RGB", (grad, grad.transpose(Image.Transpose.FLIP_LEFT_RIGHT), grad))
    grain = Image.effect_noise((w, h), noise)
    return Image.merge("RGB", (grad, grain, grad.transpose(Image.Transpose.FLIP_TOP_BOTTOM)))


def write_image(
    path: Path,
    size: tuple[int, int] = (320, 240),
    fmt: str | None = None,
    noise: float = 20.0,
    mode: str = "RGB",
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fmt = fmt or {".jpg": "JPEG", ".jpeg": "JPEG", ".png": "PNG", ".webp": "WEBP", ".gif": "GIF"}[path.suffix.lower()]

    im = _photo(size, noise)
    if mode == "RGBA":
        im = im.convert("RGBA")
        im.putalpha(Image.linear_gradient("L").resize(size))
    elif mode == "P":
        im = im.convert("P", palette=Image.Palette.ADAPTIVE)

    kwargs = {}
    if fmt == "JPEG":
        kwargs = {"quality": 100}
    elif fmt == "WEBP":
        kwargs = {"quality": 80}
    im.save(path, format=fmt, **kwargs)
    return path


def image_bytes(fmt: str = "PNG", size: tuple[int, int] = (200, 150)) -> bytes:
    buf = BytesIO()
    _photo(size, 20.0).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_image():
    return write_image


@pytest.fixture
def uploads_root(tmp_path: Path) -> Path:
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture
def config(uploads_root: Path) -> PipelineConfig:
    return PipelineConfig(uploads_root=uploads_root, max_concurrency=4)
