"""Module entrypoint for `python -m limaterm`."""

try:
    from .cli import run
except ImportError:
    # Frozen one-file builds can execute this module outside package context.
    from limaterm.cli import run


if __name__ == "__main__":
    raise SystemExit(run())
