from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from bootshell.common.config import LaunchOptions, RuntimeConfig, ShellPaths
from bootshell.common.types import Manifest


class Phase(str, Enum):
    UPDATE = "Update"
    SYNCFILE = "Syncfile"
    WRAPPER = "Wrapper"
    CREATE = "Create"
    PREPARE = "Prepare"
    START = "Start"
    INIT = "Init"


@dataclass
class BootstrapContext:
    """State threaded through one bootstrap run.

    Written only by the bootstrap worker. The presentation side may read
    ``manifest`` and ``phase`` for display; such reads can be stale.
    """

    options: LaunchOptions
    paths: ShellPaths
    runtime: RuntimeConfig
    manifest: Manifest | None = None
    cache_dir: Path | None = None
    phase: Phase | None = None
    files_updated: bool = False
