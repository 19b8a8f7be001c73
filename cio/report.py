from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .results import BatchSummary, OptimizationOutcome


def format_size(n: int) -> str:
    """Human size with binary prefixes: 2.00MB, 12.50KB, 512B."""
    if n > 1024 * 1024:
        return f"{n / (1024 * 1024):.2f}MB"
    if n > 1024:
        return f"{n / 1024:.2f}KB"
    return f"{n}B"


def format_summary_line(summary: BatchSummary) -> str:
    if summary.total_files == 0:
        return "No images to process"
    return f"Complete: {summary.optimized}/{summary.total_files} files optimized"


@dataclass(frozen=True)
class FileReport:
    path: str
    kind: str
    status: str
    src_bytes: int
    out_bytes: int
    saved_bytes: int
    saved_percent: float
    detail: Optional[str]


@dataclass(frozen=True)
class BatchReport:
    created_utc: str
    summary: dict
    files: List[FileReport]


def build_report(results: List[OptimizationOutcome], summary: BatchSummary) -> BatchReport:
    created_utc = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    files: List[FileReport] = []
    for r in results:
        files.append(
            FileReport(
                path=str(r.path),
                kind=r.kind.value,
                status=r.status.value,
                src_bytes=r.src_bytes,
                out_bytes=r.out_bytes,
                saved_bytes=r.saved_bytes,
                saved_percent=round(r.saved_percent, 2),
                detail=r.detail,
            )
        )

    summary_dict = {
        "total_files": summary.total_files,
        "optimized": summary.optimized,
        "counts": {st.value: n for st, n in summary.counts.items()},
        "total_src_bytes": summary.total_src_bytes,
        "total_out_bytes": summary.total_out_bytes,
        "saved_bytes": summary.saved_bytes,
        "saved_percent": round(summary.saved_percent, 2),
    }

    return BatchReport(created_utc=created_utc, summary=summary_dict, files=files)


def save_report_json(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(report), f, indent=2, ensure_ascii=False)
