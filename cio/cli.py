from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .batch import Terminated, handle_termination, process_batch
from .hook import files_from_env, run_hook
from .logs import setup_logging
from .report import build_report, format_summary_line, save_report_json
from .settings import OptimizeSettings, settings_from_env
from .tools import MissingRequiredTool, install_hint, probe

APP_NAME = "Image Optimization Hook"
APP_VERSION = "1.0.0"

logger = logging.getLogger("cio")


def _add_common_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--min-size", type=int, default=None, help="Skip files smaller than this many bytes (default 10240)")
    p.add_argument("--jpeg-quality", type=int, default=None, help="jpegoptim --max quality 0-100 (default 85)")
    p.add_argument("--png-level", type=int, default=None, help="optipng optimization level 0-7 (default 2)")
    p.add_argument("--gif-level", type=int, default=None, help="gifsicle --optimize level 1-3 (default 3)")
    p.add_argument("--gif-colors", type=int, default=None, help="Max GIF palette size (default 256)")
    p.add_argument("--timeout", type=float, default=None, help="Per-tool timeout in seconds (default 30)")
    p.add_argument("--workers", type=int, default=None, help="Files processed in parallel (default 1)")
    p.add_argument("--no-verify", action="store_true", help="Don't decode-check compressor output")
    p.add_argument("--log-file", default=None, help="Log file (default ~/.claude/logs/image-optimization.log)")
    p.add_argument("--log-level", default=None, help="File log level (default INFO)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="cio",
        description="Commit-time image optimizer (jpegoptim, optipng, gifsicle, svgo)",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    sub = p.add_subparsers(dest="command", required=True)

    opt = sub.add_parser("optimize", help="Optimize the given image files in place")
    opt.add_argument("files", nargs="*", help="Files to optimize (default: $CLAUDE_FILE_PATHS)")
    opt.add_argument("--report", default=None, help="Also write a JSON report to this path")
    _add_common_options(opt)

    hook = sub.add_parser("hook", help="Pre-commit hook: optimize staged images and re-stage them")
    hook.add_argument("files", nargs="*", help="Staged files (default: $CLAUDE_FILE_PATHS, then git index)")
    hook.add_argument(
        "--event-stdin",
        action="store_true",
        help="Read a tool-event JSON payload from stdin; only act on `git commit` commands",
    )
    _add_common_options(hook)

    sub.add_parser("check-tools", help="Show which compressors are installed")

    return p


def _settings_from_args(args: argparse.Namespace) -> OptimizeSettings:
    s = settings_from_env()

    overrides: dict = {}
    for attr, field_name in (
        ("min_size", "min_size"),
        ("jpeg_quality", "jpeg_quality"),
        ("png_level", "png_level"),
        ("gif_level", "gif_level"),
        ("gif_colors", "gif_colors"),
        ("timeout", "tool_timeout"),
        ("workers", "workers"),
        ("log_level", "log_level"),
    ):
        value = getattr(args, attr, None)
        if value is not None:
            overrides[field_name] = value

    if getattr(args, "no_verify", False):
        overrides["verify_output"] = False
    if getattr(args, "log_file", None):
        overrides["log_file"] = Path(args.log_file).expanduser()

    return replace(s, **overrides) if overrides else s


def _write_report(args: argparse.Namespace, results, summary) -> None:
    if not args.report:
        return
    try:
        save_report_json(build_report(results, summary), Path(args.report))
        logger.info("Report written: %s", args.report)
    except OSError as e:
        logger.error("Could not write report %s: %s", args.report, e)


def _cmd_optimize(args: argparse.Namespace, settings: OptimizeSettings) -> int:
    logger.info("%s v%s Started", APP_NAME, APP_VERSION)

    files = [Path(f) for f in args.files] or files_from_env()
    if not files:
        logger.warning("No files provided")
        return 0

    try:
        with handle_termination():
            results, summary = process_batch(files, settings)
    except MissingRequiredTool:
        logger.error("Dependency check failed")
        return 1
    except (KeyboardInterrupt, Terminated):
        logger.warning("Interrupted; in-progress file restored")
        return 130

    logger.info(format_summary_line(summary))
    _write_report(args, results, summary)
    return 0


def _cmd_check_tools() -> int:
    tools = probe()

    for kind, st in tools.items():
        state = " ".join(st.command) if st.command else "missing"
        need = "required" if st.required else "optional"
        print(f"  {st.spec.binary:<10} {kind.value:<16} {need:<9} {state}")

    missing = tools.missing_required
    if missing:
        print(f"\nInstall with: {install_hint(missing)}")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "check-tools":
        setup_logging(log_file=None)
        return _cmd_check_tools()

    if args.command == "hook":
        try:
            settings = _settings_from_args(args)
        except ValueError as e:
            # A bad setting must not block the commit
            setup_logging(log_file=OptimizeSettings().log_file)
            logger.error("Invalid settings (%s); using defaults", e)
            settings = OptimizeSettings()
        else:
            setup_logging(log_file=settings.log_file, log_level=settings.log_level)

        event = None
        if args.event_stdin:
            try:
                event = sys.stdin.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Could not read hook payload from stdin: %s", e)
        return run_hook(files=[Path(f) for f in args.files], settings=settings, event=event)

    if args.command == "optimize":
        try:
            settings = _settings_from_args(args)
        except ValueError as e:
            parser.error(str(e))
        setup_logging(log_file=settings.log_file, log_level=settings.log_level)
        return _cmd_optimize(args, settings)

    parser.print_help()
    return 2
