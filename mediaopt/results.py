from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import TransformError


@dataclass(frozen=True)
class TransformOutcome:
    """
    Output of transforming a single image.

    On failure output_path is the untouched source and error carries the kind.
    """
    src_path: Path
    output_path: Path
    success: bool
    original_size: int
    output_size: int
    error: Optional[TransformError] = None

    @property
    def saved_bytes(self) -> int:
        # Negative when the encoder inflated the file.
        return self.original_size - self.output_size

    @property
    def saved_percent(self) -> float:
        if self.original_size <= 0:
            return 0.0
        return (self.saved_bytes / self.original_size) * 100.0


@dataclass(frozen=True)
class FileResult:
    """One supported file as seen by a batch run, sizes taken by stat."""
    path: Path
    output_path: Optional[Path]
    before_bytes: int
    after_bytes: int
    error_kind: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error_kind is not None

    @property
    def saved_bytes(self) -> int:
        if self.failed:
            return 0
        return self.before_bytes - self.after_bytes


@dataclass(frozen=True)
class DirectoryReport:
    processed: int = 0
    failed: int = 0
    saved_bytes: int = 0
    cancelled: bool = False
    files: tuple[FileResult, ...] = field(default=(), repr=False)

    def __add__(self, other: "DirectoryReport") -> "DirectoryReport":
        if not isinstance(other, DirectoryReport):
            return NotImplemented
        return DirectoryReport(
            processed=self.processed + other.processed,
            failed=self.failed + other.failed,
            saved_bytes=self.saved_bytes + other.saved_bytes,
            cancelled=self.cancelled or other.cancelled,
            files=self.files + other.files,
        )

    @classmethod
    def from_files(cls, files: tuple[FileResult, ...], cancelled: bool = False) -> "DirectoryReport":
        processed = sum(1 for f in files if not f.failed)
        failed = sum(1 for f in files if f.failed)
        saved = sum(f.saved_bytes for f in files)
        return cls(processed=processed, failed=failed, saved_bytes=saved, cancelled=cancelled, files=files)


@dataclass(frozen=True)
class UploadImageInfo:
    """
    Attached to a saved upload after a successful transform.

    original_path points at the pre-transform file, which the transform has
    already deleted when the extension changed.
    """
    optimized_path: Path
    original_path: Path
    filename: str
