"""Command lines for the terminal session kinds."""

from __future__ import annotations

from limaterm.errors import ExitCode, LimaTermError
from limaterm.terminal.models import SessionKind

DEFAULT_LIMACTL = "limactl"
DEFAULT_KUBECTL = "kubectl"
DEFAULT_DEBUG_IMAGE = "busybox"


def _require(value: str, label: str) -> str:
    cleaned = value.strip()
    if not cleaned:
        raise LimaTermError(
            f"{label} is required.",
            code=ExitCode.VALIDATION_ERROR,
            hint=f"Provide a {label.lower()} for this session kind.",
        )
    if cleaned.startswith("-"):
        raise LimaTermError(
            f"Invalid {label.lower()}: {cleaned}",
            code=ExitCode.VALIDATION_ERROR,
            hint=f"A {label.lower()} cannot start with '-'.",
        )
    return cleaned


def _namespace_args(namespace: str) -> list[str]:
    cleaned = namespace.strip()
    return ["-n", cleaned] if cleaned else []


def build_session_command(
    kind: SessionKind | str,
    *,
    instance: str,
    target: str = "",
    namespace: str = "",
    limactl: str = DEFAULT_LIMACTL,
    kubectl: str = DEFAULT_KUBECTL,
    shell: str = "",
) -> list[str]:
    try:
        resolved = SessionKind(kind)
    except ValueError as exc:
        choices = ", ".join(item.value for item in SessionKind)
        raise LimaTermError(
            f"Unsupported session kind: {kind}",
            code=ExitCode.VALIDATION_ERROR,
            hint=f"Use one of: {choices}.",
        ) from exc

    instance_name = _require(instance, "Instance")
    prefix = [limactl or DEFAULT_LIMACTL, "shell", instance_name]

    if resolved == SessionKind.INSTANCE_SHELL:
        return prefix + ([shell.strip()] if shell.strip() else [])

    kube = [kubectl or DEFAULT_KUBECTL]
    if resolved == SessionKind.NODE_SHELL:
        node = _require(target, "Node")
        return prefix + kube + ["debug", f"node/{node}", "-it", f"--image={DEFAULT_DEBUG_IMAGE}"]
    if resolved == SessionKind.POD_SHELL:
        pod = _require(target, "Pod")
        return prefix + kube + ["exec", "-it", *_namespace_args(namespace), pod, "--", shell.strip() or "sh"]
    pod = _require(target, "Pod")
    return prefix + kube + ["logs", "-f", *_namespace_args(namespace), pod]
