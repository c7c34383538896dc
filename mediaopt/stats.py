from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

import aiofiles.os

from .settings import PipelineConfig

logger = logging.getLogger(__name__)


BYTE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def format_bytes(num_bytes: int) -> str:
    """
    Human readable size in base-1024 units, at most two decimals.

    >>> format_bytes(0)
    '0 Bytes'
    >>> format_bytes(1536)
    '1.5 KB'
    >>> format_bytes(-2048)
    '-2 KB'
    """
    if num_bytes == 0:
        return "0 Bytes"

    sign = "-" if num_bytes < 0 else ""
    value = float(abs(num_bytes))

    i = 0
    while value >= 1024 and i < len(BYTE_UNITS) - 1:
        value /= 1024
        i += 1

    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{sign}{text} {BYTE_UNITS[i]}"


@dataclass(frozen=True)
class DirStats:
    file_count: int = 0
    total_bytes: int = 0

    def __add__(self, other: "DirStats") -> "DirStats":
        return DirStats(self.file_count + other.file_count, self.total_bytes + other.total_bytes)


@dataclass(frozen=True)
class DirectoryStats:
    directory: str
    exists: bool
    stats: DirStats = DirStats()


@dataclass(frozen=True)
class StatsSummary:
    details: tuple[DirectoryStats, ...]

    @property
    def total_directories(self) -> int:
        return len(self.details)

    @property
    def total_files(self) -> int:
        return sum(d.stats.file_count for d in self.details)

    @property
    def total_bytes(self) -> int:
        return sum(d.stats.total_bytes for d in self.details)


async def collect_stats(root: Path) -> DirStats:
    """
    Count every regular file below `root` and add up their sizes. Read-only.

    Listing `root` itself may raise; deeper listing or stat errors are logged
    and that entry contributes nothing.
    """
    with await aiofiles.os.scandir(Path(root)) as it:
        entries = list(it)

    total = DirStats()
    subdirs: List[Path] = []
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                subdirs.append(Path(entry.path))
            elif entry.is_file():
                st = await aiofiles.os.stat(entry.path)
                total = total + DirStats(1, st.st_size)
        except OSError as e:
            logger.error("Cannot stat %s: %s", entry.path, e)

    for child in await asyncio.gather(*(_collect_child(d) for d in subdirs)):
        total = total + child
    return total


async def _collect_child(path: Path) -> DirStats:
    try:
        return await collect_stats(path)
    except OSError as e:
        logger.error("Cannot read directory %s: %s", path, e)
        return DirStats()


async def collect_upload_stats(config: PipelineConfig) -> StatsSummary:
    details: List[DirectoryStats] = []
    for name, dir_path in config.subdirectory_paths():
        if not await aiofiles.os.path.isdir(dir_path):
            details.append(DirectoryStats(directory=name, exists=False))
            continue
        details.append(DirectoryStats(directory=name, exists=True, stats=await collect_stats(dir_path)))
    return StatsSummary(details=tuple(details))


def run_stats(config: PipelineConfig) -> StatsSummary:
    return asyncio.run(collect_upload_stats(config))
