"""Desktop entrypoint: wires config, registry and the terminal window."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable
from pathlib import Path

from limaterm.config import AppConfig, load_config
from limaterm.errors import ExitCode
from limaterm.terminal.models import SpawnOptions
from limaterm.terminal.persistence import SavedSession, cleanup_old_histories, delete_session_history
from limaterm.terminal.registry import SessionRegistry
from limaterm.terminal.resize import Scheduler
from limaterm.terminal.service import TerminalService

logger = py_logging.getLogger(__name__)

WindowRunner = Callable[..., int]


def build_registry(config: AppConfig, **overrides: object) -> SessionRegistry:
    kwargs: dict[str, object] = {
        "close_grace_seconds": config.close_grace_seconds,
        "max_pending_output_bytes": config.max_pending_output_bytes,
        "history_bytes": config.history_bytes,
        "max_sessions": config.max_sessions,
    }
    kwargs.update(overrides)
    return SessionRegistry(**kwargs)  # type: ignore[arg-type]


def build_service(config: AppConfig, registry: SessionRegistry, scheduler: Scheduler) -> TerminalService:
    return TerminalService(
        registry,
        scheduler=scheduler,
        cell=config.cell_metrics(),
        padding=config.padding_box(),
        scrollbar_width=config.scrollbar_width,
        debounce_ms=config.resize_debounce_ms,
        pulse_interval_ms=config.pulse_interval_ms,
        pulse_stable_checks=config.pulse_stable_checks,
        pulse_max_ms=config.pulse_max_ms,
        replay_history=config.replay_history_on_attach,
        default_cols=config.default_cols,
        default_rows=config.default_rows,
    )


def _default_window_runner(**kwargs: object) -> int:
    from limaterm.ui.terminal_window import run_terminal_window

    return run_terminal_window(**kwargs)  # type: ignore[arg-type]


def launch_app(
    options: SpawnOptions,
    *,
    config: AppConfig | None = None,
    config_path: str | Path | None = None,
    registry: SessionRegistry | None = None,
    window_runner: WindowRunner | None = None,
    restored: SavedSession | None = None,
) -> int:
    """Open a terminal window for ``options``; on exit persist histories and close sessions.

    A ``restored`` session's output is shown above the new shell's; its saved
    history is consumed once the window closes.
    """
    resolved = config or load_config(config_path)
    registry = registry or build_registry(resolved)
    runner = window_runner or _default_window_runner

    max_age = resolved.history_max_age_days * 86400
    try:
        removed = cleanup_old_histories(resolved.history_dir, max_age)
    except OSError as exc:
        logger.warning("Session history cleanup failed: %s", exc)
    else:
        if removed:
            logger.info("Removed %s stale session histories", len(removed))

    try:
        result = runner(
            service_factory=lambda scheduler: build_service(resolved, registry, scheduler),
            options=options,
            font_family=resolved.font_family,
            font_size=resolved.font_size,
            line_height=resolved.line_height,
            letter_spacing=resolved.letter_spacing,
            title=" ".join(options.argv),
            close_session_on_exit=False,
            initial_output=restored.history if restored is not None else b"",
        )
    finally:
        if restored is not None:
            try:
                delete_session_history(resolved.history_dir, restored.session_id)
            except OSError as exc:
                logger.warning("Removing restored history %s failed: %s", restored.session_id, exc)
        try:
            saved = registry.save_all_sessions(resolved.history_dir)
        except OSError as exc:
            logger.warning("Saving session histories failed: %s", exc)
        else:
            logger.debug("Saved histories for %s sessions", len(saved))
        registry.close_all()
    return int(result) if isinstance(result, int) else int(ExitCode.SUCCESS)
