"""Tests for the compressor adapters and output verification (cio/codecs.py)."""

import subprocess
from pathlib import Path

import pytest

import cio.codecs as codecs
from cio.codecs import (
    ToolInvocationError,
    compress_gif,
    compress_jpeg,
    compress_png,
    compress_svg,
    run_tool,
    verify_output,
)
from cio.results import MediaKind
from cio.settings import OptimizeSettings

from conftest import leftovers, make_gif, make_jpeg, make_png, make_svg


class FakeRun:
    """Stand-in for subprocess.run that records argv and optionally writes `-o` output."""

    def __init__(self, returncode=0, output=b"smaller", stderr=""):
        self.calls = []
        self.returncode = returncode
        self.output = output
        self.stderr = stderr

    def __call__(self, argv, **kwargs):
        self.calls.append((list(argv), kwargs))
        if "-o" in argv and self.output is not None:
            Path(argv[argv.index("-o") + 1]).write_bytes(self.output)
        return subprocess.CompletedProcess(argv, self.returncode, "", self.stderr)


@pytest.fixture
def fake_run(monkeypatch):
    fake = FakeRun()
    monkeypatch.setattr(codecs.subprocess, "run", fake)
    return fake


class TestRunTool:
    def test_passes_timeout(self, fake_run):
        run_tool(["jpegoptim", "x.jpg"], timeout=12.5)
        argv, kwargs = fake_run.calls[0]
        assert argv == ["jpegoptim", "x.jpg"]
        assert kwargs["timeout"] == 12.5

    def test_nonzero_exit(self, fake_run):
        fake_run.returncode = 2
        fake_run.stderr = "warning\nerror: bad marker"
        with pytest.raises(ToolInvocationError, match="status 2: error: bad marker") as ei:
            run_tool(["/usr/bin/jpegoptim", "x.jpg"], timeout=1)
        assert ei.value.missing is False

    def test_timeout(self, monkeypatch):
        def slow(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

        monkeypatch.setattr(codecs.subprocess, "run", slow)
        with pytest.raises(ToolInvocationError, match="timed out after 3s"):
            run_tool(["optipng", "x.png"], timeout=3)

    def test_binary_missing(self, monkeypatch):
        def missing(argv, **kwargs):
            raise FileNotFoundError(2, "No such file or directory")

        monkeypatch.setattr(codecs.subprocess, "run", missing)
        with pytest.raises(ToolInvocationError) as ei:
            run_tool(["gifsicle"], timeout=1)
        assert ei.value.missing is True


class TestAdapters:
    def test_jpeg_flags(self, fake_run, tmp_path):
        f = tmp_path / "a.jpg"
        compress_jpeg(f, ("/usr/bin/jpegoptim",), OptimizeSettings(jpeg_quality=80, log_file=None))

        argv, _ = fake_run.calls[0]
        assert argv == [
            "/usr/bin/jpegoptim",
            "--max=80",
            "--strip-all",
            "--all-progressive",
            "--preserve",
            "--quiet",
            str(f),
        ]

    def test_png_flags(self, fake_run, tmp_path, settings):
        f = tmp_path / "a.png"
        compress_png(f, ("optipng",), settings)

        argv, kwargs = fake_run.calls[0]
        assert argv == ["optipng", "-o2", "-preserve", "-quiet", str(f)]
        assert kwargs["timeout"] == 30.0

    def test_gif_writes_sibling_then_replaces(self, fake_run, tmp_path):
        f = tmp_path / "anim.gif"
        f.write_bytes(b"original gif bytes")
        s = OptimizeSettings(gif_level=2, gif_colors=128, log_file=None)

        compress_gif(f, ("gifsicle",), s)

        argv, _ = fake_run.calls[0]
        assert argv[:5] == ["gifsicle", "--optimize=2", "--colors", "128", str(f)]
        out = Path(argv[argv.index("-o") + 1])
        assert out.parent == tmp_path
        assert out != f
        assert f.read_bytes() == b"smaller"
        assert leftovers(tmp_path) == []

    def test_svg_uses_npx_prefix(self, fake_run, tmp_path, settings):
        f = tmp_path / "logo.svg"
        f.write_text("<svg/>")

        compress_svg(f, ("/usr/bin/npx", "svgo"), settings)

        argv, _ = fake_run.calls[0]
        assert argv[:3] == ["/usr/bin/npx", "svgo", str(f)]
        assert argv[-1] == "--quiet"
        assert f.read_bytes() == b"smaller"

    def test_failed_write_leaves_no_temp(self, fake_run, tmp_path, settings):
        f = tmp_path / "anim.gif"
        f.write_bytes(b"original")
        fake_run.returncode = 1

        with pytest.raises(ToolInvocationError):
            compress_gif(f, ("gifsicle",), settings)

        assert f.read_bytes() == b"original"
        assert leftovers(tmp_path) == []

    def test_empty_output_is_failure(self, fake_run, tmp_path, settings):
        f = tmp_path / "logo.svg"
        f.write_text("<svg/>")
        fake_run.output = b""

        with pytest.raises(ToolInvocationError, match="empty"):
            compress_svg(f, ("svgo",), settings)

        assert f.read_text() == "<svg/>"
        assert leftovers(tmp_path) == []


class TestVerifyOutput:
    def test_valid_files_pass(self, tmp_path):
        verify_output(make_jpeg(tmp_path / "a.jpg"), MediaKind.LOSSY_RASTER)
        verify_output(make_gif(tmp_path / "a.gif"), MediaKind.ANIMATED_RASTER)
        verify_output(make_svg(tmp_path / "a.svg"), MediaKind.VECTOR)

    def test_garbage_raster(self, tmp_path):
        f = tmp_path / "a.jpg"
        f.write_bytes(b"definitely not a jpeg")
        with pytest.raises(ToolInvocationError, match="does not decode"):
            verify_output(f, MediaKind.LOSSY_RASTER)

    def test_truncated_jpeg(self, tmp_path):
        f = make_jpeg(tmp_path / "a.jpg")
        data = f.read_bytes()
        f.write_bytes(data[: len(data) // 2])
        with pytest.raises(ToolInvocationError):
            verify_output(f, MediaKind.LOSSY_RASTER)

    def test_broken_svg(self, tmp_path):
        f = tmp_path / "a.svg"
        f.write_text("<svg><rect></svg>")
        with pytest.raises(ToolInvocationError, match="SVG"):
            verify_output(f, MediaKind.VECTOR)

    def test_lossless_same_pixels_pass(self, tmp_path):
        ref = make_png(tmp_path / "ref.png", compress_level=0)
        out = make_png(tmp_path / "out.png", compress_level=9)
        verify_output(out, MediaKind.LOSSLESS_RASTER, reference=ref)

    def test_lossless_different_pixels_fail(self, tmp_path):
        ref = make_png(tmp_path / "ref.png")
        out = make_png(tmp_path / "out.png", size=(100, 100))
        with pytest.raises(ToolInvocationError, match="pixel"):
            verify_output(out, MediaKind.LOSSLESS_RASTER, reference=ref)
