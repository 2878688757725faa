"""XDG config loading/saving."""

from __future__ import annotations

import math
import os
import sys
from contextlib import suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing_extensions import TypedDict

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from limaterm.terminal.geometry import CellMetrics, Padding

DEFAULT_CONFIG_PATH = Path("~/.config/limaterm/config.toml").expanduser()
DEFAULT_HISTORY_DIR = "~/.config/limaterm/history"
LIMACTL_ENV = "LIMATERM_LIMACTL"

DEFAULT_SHELL = os.environ.get("SHELL", "/bin/sh") if sys.platform != "win32" else "powershell.exe"


class PaddingConfig(TypedDict):
    left: float
    right: float
    top: float
    bottom: float


def _default_padding() -> PaddingConfig:
    return PaddingConfig(left=4.0, right=4.0, top=4.0, bottom=4.0)


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    limactl_path: str = "limactl"
    kubectl_command: str = "kubectl"
    default_shell: str = DEFAULT_SHELL
    default_instance: str = "default"
    default_cols: int = Field(default=80, ge=2, le=1000)
    default_rows: int = Field(default=24, ge=1, le=1000)
    close_grace_seconds: float = Field(default=3.0, ge=0.0, le=60.0)
    max_pending_output_bytes: int = Field(default=1024 * 1024, ge=4096)
    history_bytes: int = Field(default=100 * 1024, ge=0)
    max_sessions: int = Field(default=32, ge=1, le=256)
    resize_debounce_ms: int = Field(default=200, ge=0, le=5000)
    pulse_interval_ms: int = Field(default=16, ge=1, le=1000)
    pulse_stable_checks: int = Field(default=3, ge=1, le=100)
    pulse_max_ms: int = Field(default=200, ge=0, le=10000)
    font_family: str = "Menlo, Monaco, 'Courier New', monospace"
    font_size: float = Field(default=12.0, gt=0, le=96)
    line_height: float = Field(default=1.15, ge=1.0, le=3.0)
    letter_spacing: float = Field(default=0.0, ge=-5.0, le=20.0)
    scrollbar_width: float = Field(default=10.0, ge=0.0, le=100.0)
    padding: PaddingConfig = Field(default_factory=_default_padding)
    replay_history_on_attach: bool = False
    history_dir: str = DEFAULT_HISTORY_DIR
    history_max_age_days: int = Field(default=7, ge=0, le=3650)

    @field_validator("limactl_path", "kubectl_command", "default_shell")
    @classmethod
    def _validate_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Command cannot be empty")
        return value.strip()

    def cell_metrics(self) -> CellMetrics:
        return CellMetrics.estimate(
            self.font_size,
            line_height=self.line_height,
            letter_spacing=self.letter_spacing,
        )

    def padding_box(self) -> Padding:
        return Padding(
            left=self.padding["left"],
            right=self.padding["right"],
            top=self.padding["top"],
            bottom=self.padding["bottom"],
        )


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _is_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _normalize_padding(value: object, defaults: PaddingConfig) -> PaddingConfig:
    if isinstance(value, (int, float)) and _is_number(value) and value >= 0:
        amount = float(value)
        return PaddingConfig(left=amount, right=amount, top=amount, bottom=amount)
    if not isinstance(value, dict):
        return defaults
    normalized = dict(defaults)
    for side in ("left", "right", "top", "bottom"):
        item = value.get(side)
        if _is_number(item) and item >= 0:
            normalized[side] = float(item)
    return PaddingConfig(
        left=normalized["left"],
        right=normalized["right"],
        top=normalized["top"],
        bottom=normalized["bottom"],
    )


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    for name in (
        "limactl_path",
        "kubectl_command",
        "default_shell",
        "default_instance",
        "font_family",
        "history_dir",
    ):
        value = raw.get(name)
        if isinstance(value, str) and value.strip():
            with suppress(ValueError):
                setattr(cfg, name, value.strip())

    for name in (
        "default_cols",
        "default_rows",
        "max_pending_output_bytes",
        "history_bytes",
        "max_sessions",
        "resize_debounce_ms",
        "pulse_interval_ms",
        "pulse_stable_checks",
        "pulse_max_ms",
        "history_max_age_days",
    ):
        value = raw.get(name)
        if isinstance(value, int) and not isinstance(value, bool):
            with suppress(ValueError):
                setattr(cfg, name, value)

    for name in ("close_grace_seconds", "font_size", "line_height", "letter_spacing", "scrollbar_width"):
        value = raw.get(name)
        if _is_number(value):
            with suppress(ValueError):
                setattr(cfg, name, float(value))

    replay = raw.get("replay_history_on_attach")
    if isinstance(replay, bool):
        cfg.replay_history_on_attach = replay

    cfg.padding = _normalize_padding(raw.get("padding"), cfg.padding)

    env_limactl = os.getenv(LIMACTL_ENV, "").strip()
    if env_limactl:
        cfg.limactl_path = env_limactl

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    if not isinstance(raw, dict):
        return _sanitize({})
    return _sanitize(raw)


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"limactl_path = {_toml_scalar(config.limactl_path)}",
        f"kubectl_command = {_toml_scalar(config.kubectl_command)}",
        f"default_shell = {_toml_scalar(config.default_shell)}",
        f"default_instance = {_toml_scalar(config.default_instance)}",
        f"default_cols = {_toml_scalar(config.default_cols)}",
        f"default_rows = {_toml_scalar(config.default_rows)}",
        f"close_grace_seconds = {_toml_scalar(float(config.close_grace_seconds))}",
        f"max_pending_output_bytes = {_toml_scalar(config.max_pending_output_bytes)}",
        f"history_bytes = {_toml_scalar(config.history_bytes)}",
        f"max_sessions = {_toml_scalar(config.max_sessions)}",
        f"resize_debounce_ms = {_toml_scalar(config.resize_debounce_ms)}",
        f"pulse_interval_ms = {_toml_scalar(config.pulse_interval_ms)}",
        f"pulse_stable_checks = {_toml_scalar(config.pulse_stable_checks)}",
        f"pulse_max_ms = {_toml_scalar(config.pulse_max_ms)}",
        f"font_family = {_toml_scalar(config.font_family)}",
        f"font_size = {_toml_scalar(float(config.font_size))}",
        f"line_height = {_toml_scalar(float(config.line_height))}",
        f"letter_spacing = {_toml_scalar(float(config.letter_spacing))}",
        f"scrollbar_width = {_toml_scalar(float(config.scrollbar_width))}",
        f"replay_history_on_attach = {_toml_scalar(config.replay_history_on_attach)}",
        f"history_dir = {_toml_scalar(config.history_dir)}",
        f"history_max_age_days = {_toml_scalar(config.history_max_age_days)}",
        "",
        "[padding]",
    ]
    for side in ("left", "right", "top", "bottom"):
        lines.append(f"{side} = {_toml_scalar(float(config.padding[side]))}")

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
