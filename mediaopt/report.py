from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .batch import BatchSummary
from .stats import StatsSummary, format_bytes


@dataclass(frozen=True)
class FileReport:
    src_path: str
    out_path: Optional[str]
    src_bytes: int
    out_bytes: int
    saved_bytes: int
    error_kind: Optional[str]


@dataclass(frozen=True)
class BatchReport:
    created_utc: str
    summary: dict
    directories: List[dict]
    files: List[FileReport]


def build_report(summary: BatchSummary) -> BatchReport:
    created_utc = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    files: List[FileReport] = []
    for r in summary.total.files:
        files.append(
            FileReport(
                src_path=str(r.path),
                out_path=str(r.output_path) if r.output_path else None,
                src_bytes=r.before_bytes,
                out_bytes=r.after_bytes,
                saved_bytes=r.saved_bytes,
                error_kind=r.error_kind,
            )
        )

    summary_dict = {
        "processed": summary.processed,
        "failed": summary.failed,
        "saved_bytes": summary.saved_bytes,
        "cancelled": summary.cancelled,
    }

    return BatchReport(
        created_utc=created_utc,
        summary=summary_dict,
        directories=optimize_payload(summary)["details"],
        files=files,
    )


def save_report_json(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(report), f, indent=2, ensure_ascii=False)


def optimize_payload(summary: BatchSummary) -> dict:
    """Response body of the admin optimize endpoint."""
    details = []
    for r in summary.results:
        if r.report is None:
            details.append({"directory": r.directory, "status": "skipped", "reason": r.skipped_reason})
            continue
        details.append(
            {
                "directory": r.directory,
                "processed": r.report.processed,
                "failed": r.report.failed,
                "savedBytes": r.report.saved_bytes,
                "savedBytesHuman": format_bytes(r.report.saved_bytes),
            }
        )

    return {
        "success": True,
        "summary": {
            "totalProcessed": summary.processed,
            "totalFailed": summary.failed,
            "totalSavedBytes": summary.saved_bytes,
            "totalSavedBytesHuman": format_bytes(summary.saved_bytes),
            "cancelled": summary.cancelled,
        },
        "details": details,
    }


def stats_payload(summary: StatsSummary) -> dict:
    """Response body of the admin stats endpoint."""
    return {
        "success": True,
        "summary": {
            "totalDirectories": summary.total_directories,
            "totalFiles": summary.total_files,
            "totalSize": summary.total_bytes,
            "totalSizeHuman": format_bytes(summary.total_bytes),
        },
        "details": [
            {
                "directory": d.directory,
                "exists": d.exists,
                "fileCount": d.stats.file_count,
                "totalSize": d.stats.total_bytes,
                "totalSizeHuman": format_bytes(d.stats.total_bytes),
            }
            for d in summary.details
        ],
    }
