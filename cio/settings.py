from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional


DEFAULT_LOG_FILE = Path.home() / ".claude" / "logs" / "image-optimization.log"

# Env var -> settings field. Values are parsed with the field's default type.
ENV_VARS = {
    "CIO_MIN_SIZE": "min_size",
    "CIO_JPEG_QUALITY": "jpeg_quality",
    "CIO_PNG_LEVEL": "png_level",
    "CIO_GIF_LEVEL": "gif_level",
    "CIO_GIF_COLORS": "gif_colors",
    "CIO_TOOL_TIMEOUT": "tool_timeout",
    "CIO_WORKERS": "workers",
    "CIO_VERIFY_OUTPUT": "verify_output",
    "CIO_LOG_FILE": "log_file",
    "CIO_LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class OptimizeSettings:
    """
    All user-configurable knobs for a commit-time optimization run.

    Pure data (plus range checks) so it is easy to build from env vars,
    CLI flags or tests.
    """

    # ----- Safety net -----
    # Files smaller than this are left alone; per-format overhead makes
    # recompressing them pointless.
    min_size: int = 10 * 1024

    # ----- JPEG (jpegoptim) -----
    jpeg_quality: int = 85  # 0-100

    # ----- PNG (optipng) -----
    png_level: int = 2  # -o0 .. -o7

    # ----- GIF (gifsicle) -----
    gif_level: int = 3  # --optimize=1..3
    gif_colors: int = 256

    # ----- Tool invocation -----
    tool_timeout: float = 30.0  # seconds
    workers: int = 1
    verify_output: bool = True

    # ----- Logging -----
    log_file: Optional[Path] = field(default=DEFAULT_LOG_FILE)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        _check_range("min_size", self.min_size, 0, None)
        _check_range("jpeg_quality", self.jpeg_quality, 0, 100)
        _check_range("png_level", self.png_level, 0, 7)
        _check_range("gif_level", self.gif_level, 1, 3)
        _check_range("gif_colors", self.gif_colors, 2, 256)
        _check_range("workers", self.workers, 1, None)
        if self.tool_timeout <= 0:
            raise ValueError("tool_timeout must be greater than 0.")
        if self.log_level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {self.log_level}")


def _check_range(label: str, value: int, lo: int, hi: Optional[int]) -> None:
    if value < lo or (hi is not None and value > hi):
        if hi is None:
            raise ValueError(f"{label} must be at least {lo}.")
        raise ValueError(f"{label} must be between {lo} and {hi}.")


def _parse_bool(text: str) -> bool:
    t = text.strip().lower()
    if t in {"1", "true", "yes", "on"}:
        return True
    if t in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Not a boolean: {text!r}")


def settings_from_env(
    environ: Optional[Mapping[str, str]] = None,
    base: Optional[OptimizeSettings] = None,
) -> OptimizeSettings:
    """
    Overlay CIO_* environment variables on top of `base` (defaults if None).

    Empty values are ignored. Raises ValueError on unparsable or
    out-of-range values.
    """
    env = os.environ if environ is None else environ
    s = base or OptimizeSettings()
    overrides: dict = {}

    for var, name in ENV_VARS.items():
        raw = env.get(var, "").strip()
        if not raw:
            continue

        current = getattr(s, name)
        try:
            if name == "log_file":
                overrides[name] = Path(raw).expanduser()
            elif isinstance(current, bool):
                overrides[name] = _parse_bool(raw)
            elif isinstance(current, int):
                overrides[name] = int(raw)
            elif isinstance(current, float):
                overrides[name] = float(raw)
            else:
                overrides[name] = raw
        except ValueError as e:
            raise ValueError(f"{var}: {e}") from e

    if not overrides:
        return s
    return replace(s, **overrides)
