"""Entry point for applications started in a separate interpreter.

Usage: ``python -m bootshell.launcher.child <module path> [args...] <entry point>``

The module path lists cached artifact locations joined by ``os.pathsep``.
Forwarded arguments become ``sys.argv[1:]`` of the application.
"""

from __future__ import annotations

import importlib.util
import logging
import os
import runpy
import sys
from pathlib import Path

from bootshell.common.errors import ResolutionError
from bootshell.launcher.launch_strategy import LaunchParameters, is_application_class
from bootshell.launcher.loader import install_finder, resolve_entry_point


log = logging.getLogger(__name__)


def _is_module(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def run(module_path: str, forwarded: list[str], entry_point: str) -> int:
    install_finder(Path(p) for p in module_path.split(os.pathsep) if p)
    sys.argv = [entry_point, *forwarded]

    if ":" not in entry_point and _is_module(entry_point):
        runpy.run_module(entry_point, run_name="__main__", alter_sys=True)
        return 0

    target = resolve_entry_point(entry_point)
    if is_application_class(target):
        app = target()
        app.init()
        try:
            result = app.start(LaunchParameters.from_args(forwarded))
        finally:
            app.stop()
    elif callable(target):
        result = target()
    else:
        raise ResolutionError(f"Entry point {entry_point!r} is not callable", entry_point=entry_point)
    return result if isinstance(result, int) else 0


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print("usage: python -m bootshell.launcher.child <module path> [args...] <entry point>", file=sys.stderr)
        return 2
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    try:
        return run(args[0], args[1:-1], args[-1])
    except ResolutionError as exc:
        log.error("%s", exc)
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
