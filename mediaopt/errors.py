from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional


ErrorKind = Literal["decode", "io", "unsupported"]


class TransformError(Exception):
    """
    Base for every per-file failure of the pipeline.

    `kind` lets callers branch without looking at the message text.
    """

    kind: ErrorKind

    def __init__(self, path: Path, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"{path}: {message}")
        self.path = Path(path)
        self.message = message
        self.cause = cause


class DecodeError(TransformError):
    """Bytes are not a readable image, or the encoder rejected the decoded pixels."""

    kind: ErrorKind = "decode"


class FileIOError(TransformError):
    """Reading, stat-ing, writing or deleting a file failed."""

    kind: ErrorKind = "io"


class UnsupportedFormat(TransformError):
    """Extension outside the supported set. A deliberate skip, not a failure."""

    kind: ErrorKind = "unsupported"
