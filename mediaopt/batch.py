from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import aiofiles.os

from .engine import is_supported, transform_image
from .errors import FileIOError, TransformError
from .results import DirectoryReport, FileResult
from .settings import PipelineConfig, TransformOptions
from .stats import format_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectorySnapshot:
    """
    Supported files of one directory level, captured before anything is rewritten.
    """
    path: Path
    files: tuple[Path, ...]
    subdirs: tuple["DirectorySnapshot", ...] = ()

    @property
    def total_files(self) -> int:
        return len(self.files) + sum(s.total_files for s in self.subdirs)


@dataclass(frozen=True)
class DirectoryResult:
    directory: str
    report: Optional[DirectoryReport] = None
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.report is None


@dataclass(frozen=True)
class BatchSummary:
    results: tuple[DirectoryResult, ...]

    @property
    def total(self) -> DirectoryReport:
        total = DirectoryReport()
        for r in self.results:
            if r.report is not None:
                total = total + r.report
        return total

    @property
    def processed(self) -> int:
        return self.total.processed

    @property
    def failed(self) -> int:
        return self.total.failed

    @property
    def saved_bytes(self) -> int:
        return self.total.saved_bytes

    @property
    def cancelled(self) -> bool:
        return self.total.cancelled


async def snapshot_directory(root: Path, recursive: bool = False) -> DirectorySnapshot:
    """
    List `root` (and optionally every level below it) into an immutable tree.

    Errors listing `root` itself propagate. A nested directory that cannot be
    listed is logged and treated as empty.
    """
    root = Path(root)
    with await aiofiles.os.scandir(root) as it:
        entries = sorted(it, key=lambda e: e.name)

    files: List[Path] = []
    dirs: List[Path] = []
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            dirs.append(Path(entry.path))
        elif entry.is_file() and is_supported(Path(entry.name)):
            files.append(Path(entry.path))

    _warn_on_name_collisions(files)

    subdirs: tuple[DirectorySnapshot, ...] = ()
    if recursive and dirs:
        subdirs = tuple(await asyncio.gather(*(_snapshot_child(d) for d in dirs)))

    return DirectorySnapshot(path=root, files=tuple(files), subdirs=subdirs)


def _warn_on_name_collisions(files: Sequence[Path]) -> None:
    # a.jpg and a.png both convert to a.webp; the last write wins.
    by_stem: dict[str, List[Path]] = {}
    for p in files:
        by_stem.setdefault(p.stem, []).append(p)
    for stem, group in by_stem.items():
        if len(group) > 1:
            logger.warning(
                "%s: %s share the name %r and will collide on conversion",
                group[0].parent, ", ".join(p.name for p in group), stem,
            )


async def _snapshot_child(path: Path) -> DirectorySnapshot:
    try:
        return await snapshot_directory(path, recursive=True)
    except OSError as e:
        logger.error("Cannot list %s, skipping it: %s", path, e)
        return DirectorySnapshot(path=path, files=())


async def optimize_directory(
    root: Path,
    options: TransformOptions,
    cancel_event: Optional[threading.Event] = None,
    limit: Optional[int] = None,
) -> DirectoryReport:
    """
    Transform every supported image under `root` and sum up the outcome.

    The tree is captured first, then transformed from that snapshot. Within a
    level all files and child directories run concurrently; failures only
    count against that file.
    """
    snapshot = await snapshot_directory(Path(root), recursive=options.recursive)
    logger.info("Optimizing %s (%d candidate files)", snapshot.path, snapshot.total_files)

    semaphore = asyncio.Semaphore(limit) if limit else None
    return await _optimize_snapshot(snapshot, options, cancel_event, semaphore)


async def _optimize_snapshot(
    snapshot: DirectorySnapshot,
    options: TransformOptions,
    cancel_event: Optional[threading.Event],
    semaphore: Optional[asyncio.Semaphore],
) -> DirectoryReport:
    file_tasks = [_optimize_file(p, options, cancel_event, semaphore) for p in snapshot.files]
    child_tasks = [_optimize_snapshot(s, options, cancel_event, semaphore) for s in snapshot.subdirs]

    # Single barrier for this level: files and child directories together.
    gathered = await asyncio.gather(*file_tasks, *child_tasks)
    file_results = gathered[: len(file_tasks)]
    child_reports = gathered[len(file_tasks):]

    done = tuple(r for r in file_results if r is not None)
    cancelled = len(done) < len(file_results)

    report = DirectoryReport.from_files(done, cancelled=cancelled)
    for child in child_reports:
        report = report + child
    return report


async def _optimize_file(
    path: Path,
    options: TransformOptions,
    cancel_event: Optional[threading.Event],
    semaphore: Optional[asyncio.Semaphore],
) -> Optional[FileResult]:
    """Returns None when the run was cancelled before this file started."""
    async with semaphore if semaphore is not None else nullcontext():
        if cancel_event is not None and cancel_event.is_set():
            return None

        try:
            before = await _stat_size(path)
            outcome = await transform_image(path, options)
            if outcome.error is not None:
                raise outcome.error
            after = await _stat_size(outcome.output_path)
        except TransformError as e:
            logger.error("Failed: %s (%s)", path.name, e.kind)
            return FileResult(path=path, output_path=None, before_bytes=0, after_bytes=0, error_kind=e.kind)

        saved = before - after
        logger.info("Optimized %s -> %s (saved %s)", path.name, outcome.output_path.name, format_bytes(saved))
        return FileResult(path=path, output_path=outcome.output_path, before_bytes=before, after_bytes=after)


async def _stat_size(path: Path) -> int:
    try:
        st = await aiofiles.os.stat(path)
    except OSError as e:
        raise FileIOError(path, f"stat failed: {e}", e) from e
    return st.st_size


async def optimize_uploads(
    config: PipelineConfig,
    options: Optional[TransformOptions] = None,
    cancel_event: Optional[threading.Event] = None,
    directories: Optional[Sequence[tuple[str, Path]]] = None,
    progress_callback: Optional[Callable[[str, DirectoryReport], None]] = None,
) -> BatchSummary:
    """
    One batch run over the configured upload subdirectories, in order.

    Missing directories are reported as skipped rather than failed.
    """
    options = options or config.batch_options
    directories = directories if directories is not None else config.subdirectory_paths()

    logger.info("====== Image optimization started: %s ======", config.uploads_root)

    results: List[DirectoryResult] = []
    for name, dir_path in directories:
        if cancel_event is not None and cancel_event.is_set():
            results.append(DirectoryResult(directory=name, skipped_reason="Cancelled"))
            continue

        if not await aiofiles.os.path.isdir(dir_path):
            logger.warning("Skipping missing directory: %s", name)
            results.append(DirectoryResult(directory=name, skipped_reason="Directory does not exist"))
            continue

        report = await optimize_directory(dir_path, options, cancel_event, limit=config.max_concurrency)
        logger.info(
            "Directory %s: processed=%d failed=%d saved=%s",
            name, report.processed, report.failed, format_bytes(report.saved_bytes),
        )
        results.append(DirectoryResult(directory=name, report=report))

        if progress_callback:
            progress_callback(name, report)

    summary = BatchSummary(results=tuple(results))
    logger.info(
        "====== Done: processed=%d failed=%d saved=%s%s ======",
        summary.processed, summary.failed, format_bytes(summary.saved_bytes),
        " (cancelled)" if summary.cancelled else "",
    )
    return summary


def run_batch(
    config: PipelineConfig,
    options: Optional[TransformOptions] = None,
    cancel_event: Optional[threading.Event] = None,
    directories: Optional[Sequence[tuple[str, Path]]] = None,
    progress_callback: Optional[Callable[[str, DirectoryReport], None]] = None,
) -> BatchSummary:
    """Blocking wrapper for callers without an event loop (Flask views, the CLI)."""
    return asyncio.run(optimize_uploads(config, options, cancel_event, directories, progress_callback))
