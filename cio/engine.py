from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Mapping, Optional

from .codecs import ADAPTERS, Adapter, ToolInvocationError, verify_output
from .report import format_size
from .results import MediaKind, OptimizationOutcome, Status
from .settings import OptimizeSettings
from .tools import ToolAvailability

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"

EXT_TO_KIND = {
    ".jpg": MediaKind.LOSSY_RASTER,
    ".jpeg": MediaKind.LOSSY_RASTER,
    ".png": MediaKind.LOSSLESS_RASTER,
    ".gif": MediaKind.ANIMATED_RASTER,
    ".svg": MediaKind.VECTOR,
    # Media we recognize but have no compressor for
    ".webp": MediaKind.UNSUPPORTED,
}

SUPPORTED_EXTS = set(EXT_TO_KIND)


def classify(path: Path) -> Optional[MediaKind]:
    """MediaKind for `path` by extension (case-insensitive), None if not media."""
    return EXT_TO_KIND.get(Path(path).suffix.lower())


class BackupError(OSError):
    """The safety net itself failed: a backup could not be made or restored."""


class Cancelled(BaseException):
    """Raised in a worker when the batch it belongs to is being torn down."""


class Backup:
    """
    Scoped copy of a file's bytes, held for one optimization attempt.

    On exit the original is restored unless keep() was called, and the
    backup file is gone either way. Restoring also happens when the block
    is left through KeyboardInterrupt or another BaseException.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.backup_path: Optional[Path] = None
        self._keep = False

    def __enter__(self) -> "Backup":
        try:
            fd, name = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=BACKUP_SUFFIX,
                dir=str(self.path.parent),
            )
            os.close(fd)
            self.backup_path = Path(name)
            shutil.copy2(self.path, self.backup_path)
        except OSError as e:
            if self.backup_path is not None:
                self.backup_path.unlink(missing_ok=True)
            raise BackupError(f"could not back up {self.path}: {e}") from e

        logger.debug("Backup created: %s -> %s", self.path, self.backup_path.name)
        return self

    def keep(self) -> None:
        """Keep the new content; the backup is discarded on exit."""
        self._keep = True

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.backup_path is None:
            return False

        if self._keep:
            try:
                self.backup_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error("Could not remove backup %s: %s", self.backup_path, e)
            return False

        try:
            os.replace(self.backup_path, self.path)
        except OSError as e:
            err = BackupError(f"could not restore {self.path} from {self.backup_path}: {e}")
            if exc_type is not None and not issubclass(exc_type, Exception):
                # The interrupt must still propagate
                logger.critical("Safety net failed for %s: %s", self.path, err)
                return False
            raise err from e

        logger.debug("Restored original: %s", self.path)
        return False


def optimize_file(
    path: Path,
    kind: MediaKind,
    tools: ToolAvailability,
    settings: OptimizeSettings,
    adapters: Optional[Mapping[MediaKind, Adapter]] = None,
    stop_event: Optional[threading.Event] = None,
) -> OptimizationOutcome:
    """
    Compress one file in place, keeping the result only if it got smaller.

    Never raises for per-file problems: every failure is reported through
    the returned outcome and the file is left as it was. If `stop_event` is
    set by the time the compressor returns, the file is restored and
    Cancelled is raised instead of keeping the result.
    """
    path = Path(path)
    adapters = ADAPTERS if adapters is None else adapters

    if stop_event is not None and stop_event.is_set():
        raise Cancelled(str(path))

    try:
        src_bytes = path.stat().st_size
    except OSError as e:
        logger.error("Cannot read %s: %s", path, e)
        return OptimizationOutcome(path, kind, Status.FAILED_IO_ERROR, 0, 0, str(e))

    def outcome(status: Status, out_bytes: int = src_bytes, detail: Optional[str] = None) -> OptimizationOutcome:
        return OptimizationOutcome(path, kind, status, src_bytes, out_bytes, detail)

    # Backup and restore would replace the link with a plain copy of its target
    if path.is_symlink():
        logger.info("Skipping symbolic link: %s", path.name)
        return outcome(Status.SKIPPED_UNSUPPORTED, detail="symbolic link")

    if src_bytes < settings.min_size:
        logger.warning("Skipping small file: %s (%s)", path.name, format_size(src_bytes))
        return outcome(Status.SKIPPED_TOO_SMALL)

    adapter = adapters.get(kind)
    if kind is MediaKind.UNSUPPORTED or adapter is None:
        logger.info("Unsupported format skipped: %s", path.name)
        return outcome(Status.SKIPPED_UNSUPPORTED)

    tool = tools.get(kind)
    if tool is None or not tool.present:
        if tool is not None and tool.required:
            logger.error("%s not available - cannot optimize %s", tool.spec.binary, path.name)
            return outcome(Status.FAILED_MISSING_TOOL, detail=f"{tool.spec.binary} not installed")

        binary = tool.spec.binary if tool else kind.value
        logger.info("%s not available - skipping %s", binary, path.name)
        return outcome(Status.SKIPPED_UNSUPPORTED, detail=f"{binary} not installed")

    try:
        with Backup(path) as backup:
            result = _compress(path, kind, adapter, tool.command or (), settings, backup, src_bytes)
            if stop_event is not None and stop_event.is_set():
                raise Cancelled(str(path))
            if result.status is Status.OPTIMIZED:
                backup.keep()
    except BackupError as e:
        logger.critical("Safety net failed for %s: %s", path, e)
        return outcome(Status.FAILED_IO_ERROR, detail=str(e))

    if result.status is Status.OPTIMIZED:
        logger.info(
            "Optimized: %s | Saved: %.1f%% (%s → %s)",
            path.name,
            result.saved_percent,
            format_size(result.src_bytes),
            format_size(result.out_bytes),
        )
    elif result.status is Status.SKIPPED_NO_GAIN:
        logger.warning("Already optimized: %s", path.name)
    else:
        logger.error("Failed to optimize %s: %s", path.name, result.detail)

    return result


def _compress(
    path: Path,
    kind: MediaKind,
    adapter: Adapter,
    command,
    settings: OptimizeSettings,
    backup: Backup,
    src_bytes: int,
) -> OptimizationOutcome:
    # Anything that isn't OPTIMIZED here gets rolled back by the Backup.
    try:
        adapter(path, command, settings)
        if settings.verify_output:
            verify_output(path, kind, reference=backup.backup_path)
    except ToolInvocationError as e:
        status = Status.FAILED_MISSING_TOOL if e.missing else Status.FAILED_TOOL_ERROR
        return OptimizationOutcome(path, kind, status, src_bytes, src_bytes, str(e))
    except Exception as e:
        logger.exception("Unexpected error while compressing %s", path)
        return OptimizationOutcome(path, kind, Status.FAILED_TOOL_ERROR, src_bytes, src_bytes, repr(e))

    try:
        new_bytes = path.stat().st_size
    except OSError as e:
        return OptimizationOutcome(path, kind, Status.FAILED_TOOL_ERROR, src_bytes, src_bytes, str(e))

    logger.debug("%s: %d -> %d bytes", path.name, src_bytes, new_bytes)

    # Equal size counts as no gain too
    if new_bytes >= src_bytes:
        return OptimizationOutcome(path, kind, Status.SKIPPED_NO_GAIN, src_bytes, src_bytes)

    return OptimizationOutcome(path, kind, Status.OPTIMIZED, src_bytes, new_bytes)
