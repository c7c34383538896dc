from __future__ import annotations

import asyncio
import logging
import uuid
from io import BytesIO
from pathlib import Path

import aiofiles
import aiofiles.os
from PIL import Image, ImageOps

from .errors import DecodeError, FileIOError, TransformError, UnsupportedFormat
from .results import TransformOutcome
from .settings import TransformOptions

logger = logging.getLogger(__name__)


SUPPORTED_EXTS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}

# Which encoder a source extension already corresponds to.
EXT_TO_FORMAT = {
    ".jpg": "jpeg",
    ".jpeg": "jpeg",
    ".png": "png",
    ".webp": "webp",
    ".gif": "gif",
}

FORMAT_TO_EXT = {
    "jpeg": ".jpg",
    "png": ".png",
    "webp": ".webp",
    "avif": ".avif",
}

# Modes the PNG encoder writes without conversion.
PNG_MODES = {"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"}


def is_supported(path: Path) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTS


def build_output_path(src_path: Path, target_format: str) -> Path:
    """
    Sibling path the encoded bytes go to.

    A source already in the target format keeps its own name, so the write is
    an in-place overwrite (photo.jpeg stays photo.jpeg, photo.WEBP stays photo.WEBP).
    """
    src_path = Path(src_path)
    if EXT_TO_FORMAT.get(src_path.suffix.lower()) == target_format:
        return src_path
    return src_path.with_suffix(FORMAT_TO_EXT[target_format])


async def optimize_image(src_path: Path, options: TransformOptions) -> Path:
    """Transform one file and return where it now lives (the input path on failure)."""
    outcome = await transform_image(src_path, options)
    return outcome.output_path


async def transform_image(src_path: Path, options: TransformOptions) -> TransformOutcome:
    """
    Re-encode one image next to itself.

    Never raises. A failed transform leaves the source untouched and comes
    back with success=False, output_path == src_path and the typed error.
    """
    src_path = Path(src_path)
    try:
        return await _transform(src_path, options)
    except TransformError as e:
        if e.kind != "unsupported":
            logger.error("Could not optimize %s [%s]: %s", src_path.name, e.kind, e.message)
        size = await _file_size(src_path)
        return TransformOutcome(
            src_path=src_path,
            output_path=src_path,
            success=False,
            original_size=size,
            output_size=size,
            error=e,
        )


async def _transform(src_path: Path, options: TransformOptions) -> TransformOutcome:
    if not is_supported(src_path):
        raise UnsupportedFormat(src_path, f"extension {src_path.suffix or '(none)'} is not supported")

    try:
        async with aiofiles.open(src_path, "rb") as f:
            data = await f.read()
    except OSError as e:
        raise FileIOError(src_path, f"read failed: {e}", e) from e

    # Pillow work is CPU bound; keep it off the event loop.
    payload = await asyncio.to_thread(_reencode, src_path, data, options)

    out_path = build_output_path(src_path, options.target_format)
    await _write_atomic(out_path, payload)

    # Only now that the new file is complete may the source go away.
    if out_path != src_path:
        try:
            await aiofiles.os.remove(src_path)
        except OSError as e:
            raise FileIOError(src_path, f"wrote {out_path.name} but could not delete source: {e}", e) from e

    logger.debug("Encoded %s -> %s (%d -> %d bytes)", src_path.name, out_path.name, len(data), len(payload))

    return TransformOutcome(
        src_path=src_path,
        output_path=out_path,
        success=True,
        original_size=len(data),
        output_size=len(payload),
    )


def _reencode(src_path: Path, data: bytes, options: TransformOptions) -> bytes:
    try:
        with Image.open(BytesIO(data)) as src:
            src.load()
            # Bake EXIF rotation in; metadata is not carried over.
            im = ImageOps.exif_transpose(src)
    except Exception as e:
        raise DecodeError(src_path, f"not a readable image: {e}", e) from e

    im = _apply_resize(im, options)
    im = _prepare_mode(im, options.target_format)

    buf = BytesIO()
    try:
        im.save(buf, format=options.target_format.upper(), **_build_save_kwargs(options))
    except Exception as e:
        raise DecodeError(src_path, f"{options.target_format} encoder failed: {e}", e) from e
    return buf.getvalue()


async def _write_atomic(out_path: Path, payload: bytes) -> None:
    # Temp name has an unsupported suffix, so a concurrent scan never picks it up.
    tmp_path = out_path.with_name(f".{out_path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(payload)
        await aiofiles.os.replace(tmp_path, out_path)
    except OSError as e:
        try:
            await aiofiles.os.remove(tmp_path)
        except OSError:
            pass
        raise FileIOError(out_path, f"write failed: {e}", e) from e


def _build_save_kwargs(options: TransformOptions) -> dict:
    fmt = options.target_format
    quality = int(options.quality)

    if fmt == "jpeg":
        return {"quality": quality, "optimize": True, "progressive": True}
    if fmt == "png":
        # Lossless; quality has no meaning for the PNG encoder.
        return {"compress_level": 9, "optimize": True}
    if fmt == "webp":
        return {"quality": quality, "method": 4}
    if fmt == "avif":
        return {"quality": quality}
    return {}


def _prepare_mode(im: Image.Image, target_format: str) -> Image.Image:
    if target_format == "jpeg":
        if _has_alpha(im):
            return _flatten_alpha(im, (255, 255, 255))
        if im.mode != "RGB":
            return im.convert("RGB")
        return im

    if target_format == "png":
        if im.mode in PNG_MODES:
            return im
        return im.convert("RGBA" if _has_alpha(im) else "RGB")

    # webp / avif
    if im.mode in ("RGB", "RGBA"):
        return im
    return im.convert("RGBA" if _has_alpha(im) else "RGB")


def _flatten_alpha(im: Image.Image, background_rgb: tuple[int, int, int]) -> Image.Image:
    rgba = im.convert("RGBA")
    bg = Image.new("RGBA", rgba.size, background_rgb + (255,))
    comp = Image.alpha_composite(bg, rgba)
    return comp.convert("RGB")


def _has_alpha(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA", "PA"):
        return True
    if im.mode == "P" and "transparency" in im.info:
        return True
    return False


async def _file_size(p: Path) -> int:
    try:
        st = await aiofiles.os.stat(p)
    except OSError:
        return 0
    return st.st_size


def _apply_resize(im: Image.Image, options: TransformOptions) -> Image.Image:
    """
    Fit inside max_width x max_height, keeping the aspect ratio.
    Images already inside the box are returned as-is (never upscaled).
    """
    if options.max_width is None and options.max_height is None:
        return im

    w, h = im.size
    max_w = options.max_width if options.max_width is not None else w
    max_h = options.max_height if options.max_height is not None else h

    scale = min(max_w / w, max_h / h)
    if scale >= 1.0:
        return im

    new_w = max(1, int(w * scale))
    new_h = max(1, int(h * scale))

    return im.resize((new_w, new_h), Image.Resampling.LANCZOS)
