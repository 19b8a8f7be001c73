from __future__ import annotations

import logging
import shutil
import sys
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .results import MediaKind

logger = logging.getLogger(__name__)

Which = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ToolSpec:
    name: str  # logical name, e.g. "lossy-raster-compressor"
    binary: str
    required: bool
    # Tried in order when the binary itself is not on PATH, e.g. ("npx", "svgo").
    fallback: Tuple[str, ...] = ()


TOOL_SPECS: Dict[MediaKind, ToolSpec] = {
    MediaKind.LOSSY_RASTER: ToolSpec("lossy-raster-compressor", "jpegoptim", required=True),
    MediaKind.LOSSLESS_RASTER: ToolSpec("lossless-raster-compressor", "optipng", required=True),
    MediaKind.ANIMATED_RASTER: ToolSpec("animated-raster-compressor", "gifsicle", required=False),
    MediaKind.VECTOR: ToolSpec("vector-compressor", "svgo", required=False, fallback=("npx", "svgo")),
}


@dataclass(frozen=True)
class ToolStatus:
    spec: ToolSpec
    command: Optional[Tuple[str, ...]]  # argv prefix, None if absent

    @property
    def present(self) -> bool:
        return self.command is not None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def required(self) -> bool:
        return self.spec.required


class ToolAvailability:
    """
    Read-only view of which compressors this run can use, keyed by MediaKind.

    Computed once by resolve() and then passed explicitly to the batch driver
    and the optimizer.
    """

    def __init__(self, statuses: Mapping[MediaKind, ToolStatus]) -> None:
        self._statuses = dict(statuses)

    def get(self, kind: MediaKind) -> Optional[ToolStatus]:
        return self._statuses.get(kind)

    def items(self):
        return self._statuses.items()

    @property
    def missing_required(self) -> List[str]:
        return [st.spec.binary for st in self._statuses.values() if st.required and not st.present]

    @property
    def missing_optional(self) -> List[str]:
        return [st.spec.binary for st in self._statuses.values() if not st.required and not st.present]

    @classmethod
    def from_commands(
        cls,
        commands: Mapping[MediaKind, Optional[Sequence[str]]],
        specs: Mapping[MediaKind, ToolSpec] = TOOL_SPECS,
    ) -> "ToolAvailability":
        """Build an availability map directly (kinds not listed are absent)."""
        statuses = {}
        for kind, spec in specs.items():
            cmd = commands.get(kind)
            statuses[kind] = ToolStatus(spec=spec, command=tuple(cmd) if cmd else None)
        return cls(statuses)


class MissingRequiredTool(RuntimeError):
    def __init__(self, tools: Sequence[str]) -> None:
        self.tools = list(tools)
        super().__init__(f"Missing required tools: {' '.join(self.tools)}")

    @property
    def install_hint(self) -> str:
        return install_hint(self.tools)


def install_hint(tools: Sequence[str], platform: Optional[str] = None) -> str:
    platform = platform or sys.platform
    names = " ".join(tools)
    if platform == "darwin":
        return f"brew install {names}"
    if platform.startswith("linux"):
        return f"sudo apt-get install {names}"
    return f"install {names} and make sure it is on PATH"


def _locate(spec: ToolSpec, which: Which) -> Optional[Tuple[str, ...]]:
    path = which(spec.binary)
    if path:
        return (path,)

    if spec.fallback:
        launcher = which(spec.fallback[0])
        if launcher:
            return (launcher,) + tuple(spec.fallback[1:])

    return None


def probe(
    which: Which = shutil.which,
    specs: Mapping[MediaKind, ToolSpec] = TOOL_SPECS,
) -> ToolAvailability:
    """Look every tool up on PATH without judging the result."""
    return ToolAvailability({kind: ToolStatus(spec=spec, command=_locate(spec, which)) for kind, spec in specs.items()})


def resolve(
    which: Which = shutil.which,
    specs: Mapping[MediaKind, ToolSpec] = TOOL_SPECS,
) -> ToolAvailability:
    """
    Check which compressor binaries are installed.

    Never touches any file. Missing optional tools only produce a warning
    (their formats are skipped); missing required tools raise
    MissingRequiredTool after logging what to install.
    """
    tools = probe(which, specs)

    for kind, st in tools.items():
        if st.present:
            logger.debug("Found %s for %s: %s", st.spec.binary, kind.value, " ".join(st.command or ()))

    missing = tools.missing_required
    if missing:
        for binary in missing:
            logger.error("MissingRequiredTool: %s is not installed", binary)
        logger.error("Please install them manually:")
        logger.error("  %s", install_hint(missing))
        raise MissingRequiredTool(missing)

    for binary in tools.missing_optional:
        logger.warning("Optional tool not found: %s (its format will be skipped)", binary)

    return tools
