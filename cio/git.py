from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30.0


class GitError(RuntimeError):
    pass


def _git(args: Sequence[str], cwd: Optional[Path] = None) -> str:
    argv = ["git", *args]
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=GIT_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise GitError(f"{' '.join(argv)} failed: {e}") from e

    if proc.returncode != 0:
        raise GitError(f"{' '.join(argv)} failed: {proc.stderr.strip()}")
    return proc.stdout


def repo_root(cwd: Optional[Path] = None) -> Path:
    return Path(_git(["rev-parse", "--show-toplevel"], cwd).strip())


def staged_files(cwd: Optional[Path] = None) -> List[Path]:
    """Files added, copied or modified in the index, as absolute paths."""
    root = repo_root(cwd)
    out = _git(["diff", "--cached", "--name-only", "--diff-filter=ACM", "-z"], root)
    return [root / name for name in out.split("\0") if name]


def stage(paths: Sequence[Path], cwd: Optional[Path] = None) -> None:
    if not paths:
        return
    _git(["add", "--", *[str(p) for p in paths]], cwd)
    logger.debug("Re-staged %d file(s)", len(paths))
