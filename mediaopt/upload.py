from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .engine import transform_image
from .results import UploadImageInfo
from .settings import UPLOAD_OPTIONS, TransformOptions
from .stats import format_bytes

logger = logging.getLogger(__name__)


@dataclass
class SavedUpload:
    """
    A file an upload handler has already written to disk.

    Mutable on purpose: the interceptor points it at the re-encoded file.
    """
    path: Path
    filename: str
    size: int
    original_name: Optional[str] = None
    image_info: Optional[UploadImageInfo] = None


async def optimize_upload(
    upload: SavedUpload,
    options: TransformOptions = UPLOAD_OPTIONS,
) -> Optional[UploadImageInfo]:
    """
    Re-encode one just-saved upload in place of the original.

    Never raises: on any failure the descriptor is left as it was and None
    is returned, so the upload request itself still succeeds.
    """
    label = upload.original_name or upload.filename
    logger.info("Optimizing upload %s (%s)", label, format_bytes(upload.size))

    original_path = Path(upload.path)
    try:
        outcome = await transform_image(original_path, options)
    except Exception:
        # Upload must go through whatever the optimizer does.
        logger.exception("Unexpected error optimizing upload %s, keeping original", label)
        return None

    if not outcome.success:
        logger.error("Upload optimization failed for %s, keeping original", label)
        return None

    upload.path = outcome.output_path
    upload.filename = outcome.output_path.name
    upload.size = outcome.output_size

    info = UploadImageInfo(
        optimized_path=outcome.output_path,
        original_path=original_path,
        filename=outcome.output_path.name,
    )
    upload.image_info = info

    logger.info(
        "Upload optimized: %s -> %s (%.1f%% smaller)",
        label, format_bytes(outcome.output_size), outcome.saved_percent,
    )
    return info


async def optimize_uploads_after_save(
    uploads: Sequence[SavedUpload],
    options: TransformOptions = UPLOAD_OPTIONS,
) -> list[Optional[UploadImageInfo]]:
    """Run the interceptor on several uploads concurrently."""
    if not uploads:
        return []
    return list(await asyncio.gather(*(optimize_upload(u, options) for u in uploads)))
