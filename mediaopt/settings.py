from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, get_args

from dotenv import load_dotenv


# Encoders the pipeline can write to.
TargetFormat = Literal["jpeg", "png", "webp", "avif"]
TARGET_FORMATS: tuple[str, ...] = get_args(TargetFormat)

# One folder per content category under the uploads root.
# Both the admin endpoint and the CLI read this through PipelineConfig.
UPLOAD_SUBDIRECTORIES: tuple[str, ...] = (
    "events",
    "figures",
    "sites",
    "backgrounds",
    "news",
    "contributors",
    "images",
    "favicons",
)


@dataclass(frozen=True)
class TransformOptions:
    """
    How a single image gets re-encoded.

    Pure value object: passed unchanged into every transform call of a run.
    """

    target_format: TargetFormat = "webp"
    quality: int = 80

    # ----- Resize -----
    # Bounding box, aspect ratio kept, never upscaled. None skips that axis.
    max_width: Optional[int] = None
    max_height: Optional[int] = None

    # ----- Batch only -----
    recursive: bool = False

    def __post_init__(self) -> None:
        if self.target_format not in TARGET_FORMATS:
            raise ValueError(f"Unknown target format: {self.target_format!r}")
        if not 1 <= int(self.quality) <= 100:
            raise ValueError(f"quality must be between 1 and 100, got {self.quality}")
        for name in ("max_width", "max_height"):
            value = getattr(self, name)
            if value is not None and int(value) < 1:
                raise ValueError(f"{name} must be a positive integer, got {value}")


# Upload hook policy: always webp at 80, keep pixel dimensions.
UPLOAD_OPTIONS = TransformOptions(target_format="webp", quality=80)
BATCH_OPTIONS = TransformOptions(target_format="webp", quality=80, recursive=True)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Deployment settings shared by the web app and the CLI.
    """

    uploads_root: Path = Path("uploads")
    subdirectories: tuple[str, ...] = UPLOAD_SUBDIRECTORIES

    batch_options: TransformOptions = BATCH_OPTIONS
    upload_options: TransformOptions = UPLOAD_OPTIONS

    # Public URL the uploads root is served under.
    upload_url_prefix: str = "/uploads"

    # Max transforms running at once within one directory level (None = unbounded).
    max_concurrency: Optional[int] = 8

    # ----- Logging -----
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.max_concurrency is not None and self.max_concurrency < 0:
            raise ValueError(f"max_concurrency must be 0 or more, got {self.max_concurrency}")

    def subdirectory_paths(self) -> list[tuple[str, Path]]:
        return [(name, self.uploads_root / name) for name in self.subdirectories]

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PipelineConfig":
        load_dotenv(env_file, override=False)

        subdirs = os.getenv("MEDIAOPT_SUBDIRECTORIES")
        if subdirs:
            subdirectories = tuple(s.strip() for s in subdirs.split(",") if s.strip())
        else:
            subdirectories = UPLOAD_SUBDIRECTORIES

        batch = TransformOptions(
            target_format=os.getenv("MEDIAOPT_BATCH_FORMAT", BATCH_OPTIONS.target_format),
            quality=int(os.getenv("MEDIAOPT_BATCH_QUALITY", BATCH_OPTIONS.quality)),
            recursive=True,
        )

        concurrency = os.getenv("MEDIAOPT_MAX_CONCURRENCY")
        log_file = os.getenv("MEDIAOPT_LOG_FILE")

        return cls(
            uploads_root=Path(os.getenv("MEDIAOPT_UPLOADS_ROOT", "uploads")),
            subdirectories=subdirectories,
            batch_options=batch,
            upload_url_prefix=os.getenv("MEDIAOPT_UPLOAD_URL_PREFIX", "/uploads"),
            max_concurrency=(int(concurrency) or None) if concurrency else 8,
            log_level=os.getenv("MEDIAOPT_LOG_LEVEL", "INFO"),
            log_file=Path(log_file) if log_file else None,
        )
