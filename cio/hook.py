"""
Pre-commit integration.

Optimizes the images staged for the pending commit and re-stages the ones
that got smaller. Whatever happens in here, the commit goes ahead: every
failure ends as log output and a 0 return code.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from . import git
from .batch import Terminated, handle_termination, iter_candidates, process_batch
from .codecs import Adapter
from .report import format_summary_line
from .results import MediaKind, Status
from .settings import OptimizeSettings
from .tools import MissingRequiredTool, ToolAvailability

logger = logging.getLogger(__name__)

FILE_LIST_ENV = "CLAUDE_FILE_PATHS"


def is_commit_event(event: Optional[str]) -> bool:
    """
    True when a tool-event payload is absent or describes a `git commit`.

    Payloads look like {"tool_input": {"command": "git commit -m ..."}}.
    Anything that isn't JSON is treated as "no payload".
    """
    if not event or not event.strip():
        return True

    try:
        data = json.loads(event)
    except ValueError:
        return True

    command = ""
    if isinstance(data, dict):
        tool_input = data.get("tool_input")
        if isinstance(tool_input, dict):
            command = str(tool_input.get("command") or "")

    logger.debug("Command: %s", command)
    return "git commit" in command


def files_from_env(environ: Optional[Mapping[str, str]] = None) -> List[Path]:
    env = os.environ if environ is None else environ
    return [Path(p) for p in env.get(FILE_LIST_ENV, "").split()]


def run_hook(
    files: Optional[Sequence[Path]] = None,
    settings: Optional[OptimizeSettings] = None,
    event: Optional[str] = None,
    tools: Optional[ToolAvailability] = None,
    adapters: Optional[Mapping[MediaKind, Adapter]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    """Run the commit-time optimization. Always returns 0."""
    try:
        _run(files, settings or OptimizeSettings(), event, tools, adapters, environ)
    except (KeyboardInterrupt, Terminated) as e:
        logger.warning("Interrupted (%s); commit continues with files restored", str(e) or "SIGINT")
    except Exception:
        logger.exception("Image optimization failed; commit continues unchanged")
    return 0


def _run(
    files: Optional[Sequence[Path]],
    settings: OptimizeSettings,
    event: Optional[str],
    tools: Optional[ToolAvailability],
    adapters: Optional[Mapping[MediaKind, Adapter]],
    environ: Optional[Mapping[str, str]],
) -> None:
    if not is_commit_event(event):
        return

    logger.info("Optimizing images before commit...")

    if files:
        staged = [Path(f) for f in files]
    else:
        staged = files_from_env(environ)
        if not staged:
            try:
                staged = git.staged_files()
            except git.GitError as e:
                logger.warning("Could not list staged files: %s", e)
                return

    images = [p for p, _ in iter_candidates(staged)]
    if not images:
        logger.info("No images to optimize")
        return

    logger.info("Found staged images:")
    for p in images:
        logger.info("  - %s", p)

    try:
        with handle_termination():
            results, summary = process_batch(images, settings, tools=tools, adapters=adapters)
    except MissingRequiredTool as e:
        logger.error("MissingRequiredTool: %s", e)
        logger.error("Install with: %s", e.install_hint)
        logger.warning("Skipping image optimization; commit continues unchanged")
        return

    optimized = [r.path for r in results if r.status is Status.OPTIMIZED]
    if optimized:
        try:
            git.stage(optimized)
        except git.GitError as e:
            logger.error("Could not re-stage optimized files: %s", e)

    logger.info(format_summary_line(summary))
    logger.info("Optimization complete!")
