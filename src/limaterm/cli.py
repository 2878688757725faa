"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import shlex
import sys
from collections.abc import Callable, Sequence
from dataclasses import replace
from pathlib import Path

from .config import AppConfig, load_config
from .errors import ExitCode, LimaTermError, user_facing_error
from .logging import configure_logging, default_log_path, resolve_log_level
from .terminal.commands import build_session_command
from .terminal.models import SessionKind, SpawnOptions
from .terminal.persistence import SavedSession, cleanup_old_histories, list_saved_sessions, load_saved_session

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_VALID_KINDS = tuple(kind.value for kind in SessionKind)

GuiLauncher = Callable[[SpawnOptions, AppConfig, "SavedSession | None"], "int | None"]


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="limaterm")
    parser.add_argument("--instance", default=None, help="Lima instance name")
    parser.add_argument("--kind", choices=_VALID_KINDS, default=None)
    parser.add_argument("--target", default="", help="Node or pod name")
    parser.add_argument("--namespace", default="", help="Kubernetes namespace for pod sessions")
    parser.add_argument("--command", default=None, help="Run this command line instead of a session kind")
    parser.add_argument("--cwd", type=Path, default=None)
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument(
        "--print-command",
        action="store_true",
        help="Print the resolved command line and exit",
    )
    parser.add_argument(
        "--cleanup-history",
        action="store_true",
        help="Delete saved session histories older than the configured age and exit",
    )
    parser.add_argument(
        "--list-saved",
        action="store_true",
        help="List saved session histories (newest first) and exit",
    )
    parser.add_argument(
        "--restore",
        metavar="SESSION_ID",
        default=None,
        help="Show a saved session's output and start the new shell in its last directory",
    )
    parser.add_argument(
        "--log-level",
        type=_log_level_type,
        default=None,
        help="Defaults to $LIMATERM_LOG_LEVEL, then INFO",
    )
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def resolve_spawn_options(namespace: argparse.Namespace, config: AppConfig) -> SpawnOptions:
    cwd = str(namespace.cwd.expanduser()) if namespace.cwd is not None else None
    if namespace.command is not None and namespace.kind is not None:
        raise LimaTermError(
            "--command and --kind cannot be combined.",
            code=ExitCode.INVALID_ARGS,
            hint="Pick either an explicit command or a session kind.",
        )

    if namespace.command is not None:
        try:
            argv = shlex.split(namespace.command)
        except ValueError as exc:
            raise LimaTermError(
                f"Cannot parse --command: {exc}",
                code=ExitCode.INVALID_ARGS,
                hint="Check quoting in the command line.",
            ) from exc
        if not argv:
            raise LimaTermError(
                "--command cannot be empty.",
                code=ExitCode.INVALID_ARGS,
                hint="Provide a program to run.",
            )
        return SpawnOptions(command=argv[0], args=tuple(argv[1:]), cwd=cwd)

    if namespace.kind is not None or namespace.instance is not None:
        argv = build_session_command(
            namespace.kind or SessionKind.INSTANCE_SHELL,
            instance=namespace.instance or config.default_instance,
            target=namespace.target,
            namespace=namespace.namespace,
            limactl=config.limactl_path,
            kubectl=config.kubectl_command,
        )
        return SpawnOptions(command=argv[0], args=tuple(argv[1:]), cwd=cwd)

    return SpawnOptions(command=config.default_shell, cwd=cwd)


def launch_gui(options: SpawnOptions, config: AppConfig, restored: SavedSession | None = None) -> int:
    from limaterm.ui.app import launch_app

    return launch_app(options, config=config, restored=restored)


def apply_restore(options: SpawnOptions, restored: SavedSession) -> SpawnOptions:
    """Start in the restored session's directory unless --cwd was given or it is not local."""
    if options.cwd is not None or not restored.cwd or not Path(restored.cwd).is_dir():
        return options
    return replace(options, cwd=restored.cwd)


def run_cleanup(config: AppConfig) -> int:
    removed = cleanup_old_histories(config.history_dir, config.history_max_age_days * 86400)
    print(f"Removed {len(removed)} saved session histories.")
    return int(ExitCode.SUCCESS)


def run_list_saved(config: AppConfig) -> int:
    for session_id in list_saved_sessions(config.history_dir):
        print(session_id)
    return int(ExitCode.SUCCESS)


def main(
    argv: Sequence[str] | None = None,
    *,
    gui_launcher: GuiLauncher | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    level = resolve_log_level(namespace.log_level)
    logger = configure_logging(level=level, log_file=log_path)

    try:
        config = load_config(namespace.config)
        if namespace.cleanup_history:
            return run_cleanup(config)
        if namespace.list_saved:
            return run_list_saved(config)

        options = resolve_spawn_options(namespace, config)
        restored = None
        if namespace.restore is not None:
            restored = load_saved_session(config.history_dir, namespace.restore)
            options = apply_restore(options, restored)
        if namespace.print_command:
            print(shlex.join(options.argv))
            return int(ExitCode.SUCCESS)

        launcher = gui_launcher or launch_gui
        logger.debug("Starting terminal window for %s", options.argv)
        result = launcher(options, config, restored)
        if isinstance(result, int):
            return result
        return int(ExitCode.SUCCESS)
    except LimaTermError as exc:
        logger.error(
            "Handled LimaTermError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=level == "DEBUG",
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
