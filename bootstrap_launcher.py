from __future__ import annotations

import os
import sys
from pathlib import Path


def _prepend_path(path: Path) -> None:
    if not path.exists():
        return
    p = str(path)
    if p not in sys.path:
        sys.path.insert(0, p)


def main() -> int:
    shell_root = Path(__file__).resolve().parent

    _prepend_path(shell_root / "src")

    os.environ.setdefault("BOOTSHELL_SHELL_ROOT", str(shell_root))
    os.environ.setdefault("BOOTSHELL_BASELINE_MANIFEST", str(shell_root / "app.json"))

    from bootshell.launcher.cli import main as launcher_main

    return int(launcher_main())


if __name__ == "__main__":
    raise SystemExit(main())
