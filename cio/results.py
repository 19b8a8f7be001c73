from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping, Optional


class MediaKind(Enum):
    """Format family of a candidate file, derived from its extension."""

    LOSSY_RASTER = "lossy-raster"
    LOSSLESS_RASTER = "lossless-raster"
    ANIMATED_RASTER = "animated-raster"
    VECTOR = "vector"
    # Recognized as media, but there is no compressor for it (e.g. WebP).
    UNSUPPORTED = "unsupported"


class Status(Enum):
    OPTIMIZED = "optimized"
    SKIPPED_TOO_SMALL = "skipped-too-small"
    SKIPPED_NO_GAIN = "skipped-no-gain"
    SKIPPED_UNSUPPORTED = "skipped-unsupported-format"
    FAILED_MISSING_TOOL = "failed-missing-tool"
    FAILED_TOOL_ERROR = "failed-tool-error"
    # The backup could not be made or put back: the safety net itself failed.
    FAILED_IO_ERROR = "failed-io-error"

    @property
    def is_failure(self) -> bool:
        return self.value.startswith("failed-")


@dataclass(frozen=True)
class OptimizationOutcome:
    """
    Result of running the safety-net optimizer on a single file.

    Immutable once produced. For every status other than OPTIMIZED the file
    on disk is byte-identical to what it was before the run, and out_bytes
    equals src_bytes.
    """
    path: Path
    kind: MediaKind
    status: Status
    src_bytes: int
    out_bytes: int
    detail: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.status is Status.OPTIMIZED

    @property
    def saved_bytes(self) -> int:
        if not self.changed:
            return 0
        return max(0, self.src_bytes - self.out_bytes)

    @property
    def saved_percent(self) -> float:
        if not self.changed or self.src_bytes <= 0:
            return 0.0
        return 100.0 * (1.0 - self.out_bytes / self.src_bytes)


@dataclass(frozen=True)
class BatchSummary:
    counts: Mapping[Status, int]
    total_files: int
    total_src_bytes: int
    total_out_bytes: int

    @property
    def optimized(self) -> int:
        return self.counts.get(Status.OPTIMIZED, 0)

    @property
    def failed(self) -> int:
        return sum(n for st, n in self.counts.items() if st.is_failure)

    @property
    def saved_bytes(self) -> int:
        return max(0, self.total_src_bytes - self.total_out_bytes)

    @property
    def saved_percent(self) -> float:
        if self.total_src_bytes <= 0:
            return 0.0
        return (self.saved_bytes / self.total_src_bytes) * 100.0

    @classmethod
    def from_results(cls, results: Iterable[OptimizationOutcome]) -> "BatchSummary":
        counts = {st: 0 for st in Status}
        total_files = 0
        total_src = 0
        total_out = 0

        for r in results:
            counts[r.status] += 1
            total_files += 1
            total_src += r.src_bytes
            total_out += r.out_bytes

        return cls(
            counts=counts,
            total_files=total_files,
            total_src_bytes=total_src,
            total_out_bytes=total_out,
        )
