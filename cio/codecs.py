from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from PIL import Image

from .results import MediaKind
from .settings import OptimizeSettings

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


class ToolInvocationError(RuntimeError):
    """A compressor run failed, timed out, or produced output we reject."""

    def __init__(self, message: str, missing: bool = False) -> None:
        super().__init__(message)
        self.missing = missing


Adapter = Callable[[Path, Sequence[str], OptimizeSettings], None]


def run_tool(argv: Sequence[str], timeout: float) -> None:
    """Run one compressor invocation, raising ToolInvocationError on any failure."""
    argv = [str(a) for a in argv]
    logger.debug("Running: %s", " ".join(argv))

    try:
        proc = subprocess.run(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise ToolInvocationError(f"{argv[0]} not available: {e}", missing=True) from e
    except subprocess.TimeoutExpired as e:
        raise ToolInvocationError(f"{Path(argv[0]).name} timed out after {timeout:g}s") from e
    except OSError as e:
        raise ToolInvocationError(f"{Path(argv[0]).name} could not be started: {e}") from e

    if proc.returncode != 0:
        stderr = (proc.stderr or "").strip()
        msg = f"{Path(argv[0]).name} exited with status {proc.returncode}"
        if stderr:
            msg += f": {stderr.splitlines()[-1]}"
        raise ToolInvocationError(msg)


def _run_to_sibling(
    path: Path,
    build_argv: Callable[[Path], List[str]],
    timeout: float,
) -> None:
    """
    Run a tool that writes to a separate output file, then swap it in.

    The temp file lives next to `path` so os.replace() is atomic, and it is
    removed on every failure path.
    """
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.stem}.",
        suffix=f"{TEMP_SUFFIX}{path.suffix}",
        dir=str(path.parent),
    )
    os.close(fd)
    tmp_path = Path(tmp_name)

    try:
        run_tool(build_argv(tmp_path), timeout)

        if tmp_path.stat().st_size == 0:
            raise ToolInvocationError(f"{path.name}: compressor produced an empty file")

        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def compress_jpeg(path: Path, command: Sequence[str], s: OptimizeSettings) -> None:
    # jpegoptim rewrites the file in place
    run_tool(
        [
            *command,
            f"--max={s.jpeg_quality}",
            "--strip-all",
            "--all-progressive",
            "--preserve",
            "--quiet",
            str(path),
        ],
        s.tool_timeout,
    )


def compress_png(path: Path, command: Sequence[str], s: OptimizeSettings) -> None:
    run_tool(
        [
            *command,
            f"-o{s.png_level}",
            "-preserve",
            "-quiet",
            str(path),
        ],
        s.tool_timeout,
    )


def compress_gif(path: Path, command: Sequence[str], s: OptimizeSettings) -> None:
    _run_to_sibling(
        path,
        lambda out: [
            *command,
            f"--optimize={s.gif_level}",
            "--colors",
            str(s.gif_colors),
            str(path),
            "-o",
            str(out),
        ],
        s.tool_timeout,
    )


def compress_svg(path: Path, command: Sequence[str], s: OptimizeSettings) -> None:
    _run_to_sibling(
        path,
        lambda out: [*command, str(path), "-o", str(out), "--quiet"],
        s.tool_timeout,
    )


ADAPTERS: Dict[MediaKind, Adapter] = {
    MediaKind.LOSSY_RASTER: compress_jpeg,
    MediaKind.LOSSLESS_RASTER: compress_png,
    MediaKind.ANIMATED_RASTER: compress_gif,
    MediaKind.VECTOR: compress_svg,
}


def verify_output(path: Path, kind: MediaKind, reference: Optional[Path] = None) -> None:
    """
    Reject compressor output that is not a valid file of the same kind.

    For lossless raster we also require identical pixels to `reference`.
    Raises ToolInvocationError.
    """
    if kind is MediaKind.VECTOR:
        try:
            ET.parse(path)
        except ET.ParseError as e:
            raise ToolInvocationError(f"{path.name}: output is not valid SVG markup ({e})") from e
        return

    try:
        # verify() leaves the image unusable, so open it again to decode.
        # Most plugins only check the header in verify(); load() catches truncation.
        with Image.open(path) as im:
            im.verify()
        with Image.open(path) as im:
            im.load()

        if kind is MediaKind.LOSSLESS_RASTER and reference is not None:
            if _pixels(path) != _pixels(reference):
                raise ToolInvocationError(f"{path.name}: lossless pass changed pixel data")
    except ToolInvocationError:
        raise
    except (OSError, SyntaxError, ValueError) as e:
        # Pillow raises these for truncated/corrupt data
        raise ToolInvocationError(f"{path.name}: output does not decode ({e})") from e


def _pixels(path: Path) -> tuple:
    with Image.open(path) as im:
        im.load()
        return (im.size, im.convert("RGBA").tobytes())
