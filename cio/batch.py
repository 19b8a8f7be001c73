from __future__ import annotations

import contextlib
import logging
import signal
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .codecs import Adapter
from .engine import classify, optimize_file
from .results import BatchSummary, MediaKind, OptimizationOutcome
from .settings import OptimizeSettings
from .tools import ToolAvailability, resolve

logger = logging.getLogger(__name__)


class Terminated(BaseException):
    """Raised in the main thread when the process receives SIGTERM."""


@contextlib.contextmanager
def handle_termination() -> Iterator[None]:
    """
    Turn SIGTERM into a Terminated exception for the duration of the block.

    That lets the in-progress Backup restore the file on the way out, the
    same way it does for Ctrl-C. Only possible from the main thread.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _raise(signum, frame):
        raise Terminated(f"received signal {signum}")

    previous = signal.signal(signal.SIGTERM, _raise)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def iter_candidates(paths: Sequence[Path]) -> Iterator[Tuple[Path, MediaKind]]:
    """
    Yield (path, kind) for every input that is an existing media file.

    Non-media extensions are dropped silently; they are not candidates.
    Repeated paths are yielded once, in first-seen order.
    """
    seen = set()

    for p in paths:
        p = Path(p)

        kind = classify(p)
        if kind is None:
            continue

        if not p.is_file():
            logger.warning("File not found: %s", p)
            continue

        key = p.resolve()
        if key in seen:
            continue
        seen.add(key)

        yield p, kind


def process_batch(
    inputs: Sequence[Path],
    settings: OptimizeSettings,
    tools: Optional[ToolAvailability] = None,
    adapters: Optional[Mapping[MediaKind, Adapter]] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> tuple[List[OptimizationOutcome], BatchSummary]:
    """
    Optimize every candidate in `inputs` and summarize the run.

    Tool availability is resolved once up front when not given; a missing
    required tool raises MissingRequiredTool before any file is touched.
    Per-file failures never raise; they show up in the outcomes.
    """
    if tools is None:
        tools = resolve()

    candidates = list(iter_candidates(inputs))
    total = len(candidates)
    stop = threading.Event()

    def run_one(path: Path, kind: MediaKind) -> OptimizationOutcome:
        logger.debug("Processing: %s (%s)", path, kind.value)
        return optimize_file(path, kind, tools, settings, adapters=adapters, stop_event=stop)

    if settings.workers > 1 and total > 1:
        results = _process_parallel(candidates, run_one, settings.workers, progress_callback, cancel_event, stop)
    else:
        results = []
        for idx, (path, kind) in enumerate(candidates, start=1):
            if cancel_event and cancel_event.is_set():
                break

            if progress_callback:
                progress_callback(idx, total)

            results.append(run_one(path, kind))

    summary = BatchSummary.from_results(results)
    return results, summary


def _process_parallel(
    candidates: List[Tuple[Path, MediaKind]],
    run_one: Callable[[Path, MediaKind], OptimizationOutcome],
    workers: int,
    progress_callback: Optional[Callable[[int, int], None]],
    cancel_event: Optional[threading.Event],
    stop: threading.Event,
) -> List[OptimizationOutcome]:
    # Each file only touches its own path and backup, so workers share
    # nothing; outcomes are gathered here, in the calling thread only.
    total = len(candidates)
    done: Dict[int, OptimizationOutcome] = {}

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cio")
    try:
        pending: Dict[Future, int] = {}
        for idx, (path, kind) in enumerate(candidates):
            if cancel_event and cancel_event.is_set():
                break
            pending[executor.submit(run_one, path, kind)] = idx

        while pending:
            finished, _ = wait(list(pending), timeout=0.5, return_when=FIRST_COMPLETED)
            for fut in finished:
                idx = pending.pop(fut)
                if fut.cancelled():
                    continue
                done[idx] = fut.result()
                if progress_callback:
                    progress_callback(len(done), total)

            if cancel_event and cancel_event.is_set():
                for fut in pending:
                    fut.cancel()
    except BaseException:
        # Pending files never start; running ones restore their backup
        # and raise Cancelled once their compressor returns.
        stop.set()
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    else:
        executor.shutdown(wait=True)

    return [done[i] for i in sorted(done)]
