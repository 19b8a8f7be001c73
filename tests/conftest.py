"""
Shared fixtures for the commit image optimizer test suite.

Real compressor binaries are never needed: the optimizer takes its adapters
and tool availability as arguments, so tests inject Pillow-based fakes.
"""

import logging
import os
from pathlib import Path

import pytest
from PIL import Image

from cio.codecs import ToolInvocationError
from cio.results import MediaKind
from cio.settings import OptimizeSettings
from cio.tools import ToolAvailability


@pytest.fixture(autouse=True)
def reset_cio_logger():
    """Undo setup_logging() between tests so caplog keeps seeing records."""
    yield
    logger = logging.getLogger("cio")
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def settings():
    return OptimizeSettings(log_file=None)


@pytest.fixture
def all_tools():
    return ToolAvailability.from_commands(
        {
            MediaKind.LOSSY_RASTER: ["jpegoptim"],
            MediaKind.LOSSLESS_RASTER: ["optipng"],
            MediaKind.ANIMATED_RASTER: ["gifsicle"],
            MediaKind.VECTOR: ["svgo"],
        }
    )


# ---------------- File factories ----------------

def make_jpeg(path: Path, size=(256, 256), quality=95) -> Path:
    """Random noise at high quality: large, and shrinks a lot when re-encoded."""
    w, h = size
    Image.frombytes("RGB", size, os.urandom(w * h * 3)).save(path, format="JPEG", quality=quality)
    return path


def make_png(path: Path, size=(200, 200), compress_level=0) -> Path:
    """A gradient stored uncompressed, so any real deflate pass shrinks it."""
    w, h = size
    im = Image.new("RGB", size)
    im.putdata([((x * 255) // w, (y * 255) // h, 128) for y in range(h) for x in range(w)])
    im.save(path, format="PNG", compress_level=compress_level)
    return path


def make_gif(path: Path, size=(160, 160)) -> Path:
    w, h = size
    im = Image.frombytes("L", size, os.urandom(w * h)).convert("P")
    im.save(path, format="GIF")
    return path


def make_svg(path: Path, n=400) -> Path:
    rects = "\n".join(
        f'  <!-- shape {i} -->\n  <rect x="{i}" y="{i}" width="10" height="10" fill="#ff0000"/>'
        for i in range(n)
    )
    path.write_text(
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<svg xmlns="http://www.w3.org/2000/svg" width="500" height="500">\n'
        "  <metadata>exported by a design tool</metadata>\n"
        f"{rects}\n</svg>\n",
        encoding="utf-8",
    )
    return path


def leftovers(directory: Path):
    """Backup or temp files that should never survive an optimization."""
    return sorted(p.name for p in directory.iterdir() if p.name.endswith(".backup") or ".tmp" in p.name)


# ---------------- Fake adapters ----------------

def shrink_jpeg(path, command, s):
    with Image.open(path) as im:
        im.load()
        im = im.copy()
    im.save(path, format="JPEG", quality=30)


def recompress_png(path, command, s):
    with Image.open(path) as im:
        im.load()
        im = im.copy()
    im.save(path, format="PNG", optimize=True, compress_level=9)


def minify_svg(path, command, s):
    lines = [ln.strip() for ln in path.read_text(encoding="utf-8").splitlines()]
    path.write_text("".join(ln for ln in lines if not ln.startswith("<!--")), encoding="utf-8")


def no_change(path, command, s):
    pass


def grow(path, command, s):
    with open(path, "ab") as f:
        f.write(b"\0" * 4096)


def fail(path, command, s):
    raise ToolInvocationError("fake tool exited with status 1")


def corrupt_then_fail(path, command, s):
    path.write_bytes(b"half-written garbage")
    raise ToolInvocationError("fake tool crashed mid-write")


def tool_missing(path, command, s):
    raise ToolInvocationError("fake not available", missing=True)


def crash(path, command, s):
    path.write_bytes(b"oops")
    raise RuntimeError("unexpected bug")


def write_garbage(path, command, s):
    path.write_bytes(b"not an image at all")


@pytest.fixture
def fake_adapters():
    return {
        MediaKind.LOSSY_RASTER: shrink_jpeg,
        MediaKind.LOSSLESS_RASTER: recompress_png,
        MediaKind.ANIMATED_RASTER: no_change,
        MediaKind.VECTOR: minify_svg,
    }
