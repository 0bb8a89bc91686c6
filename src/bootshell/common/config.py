from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping


USERLIB_TOKEN = "USERLIB"
ALLUSERS_TOKEN = "ALLUSERS"


@dataclass(frozen=True)
class ShellPaths:
    shell_root: Path
    baseline_manifest: Path
    default_log_file: Path

    @classmethod
    def default(cls) -> "ShellPaths":
        override_root = os.environ.get("BOOTSHELL_SHELL_ROOT", "").strip()
        if override_root:
            shell_root = Path(override_root)
        elif getattr(sys, "frozen", False):
            shell_root = Path(sys.executable).resolve().parent
        else:
            shell_root = Path.cwd()

        override_baseline = os.environ.get("BOOTSHELL_BASELINE_MANIFEST", "").strip()
        baseline = Path(override_baseline) if override_baseline else shell_root / "app.json"
        return cls(
            shell_root=shell_root,
            baseline_manifest=baseline,
            default_log_file=Path(tempfile.gettempdir()) / "bootshell.log",
        )


def parse_trusted_keys(value: str) -> dict[str, str]:
    """Parse ``key-id=base64-public-key`` pairs separated by commas or semicolons."""
    keys: dict[str, str] = {}
    for entry in value.replace(";", ",").split(","):
        key_id, sep, key = entry.partition("=")
        if sep and key_id.strip() and key.strip():
            keys[key_id.strip()] = key.strip()
    return keys


@dataclass(frozen=True)
class RuntimeConfig:
    download_chunk_size: int = 64 * 1024
    connect_timeout_seconds: int = 10
    read_timeout_seconds: int = 60
    max_retries: int = 3
    child_health_check_seconds: float = 2.0
    trusted_keys: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        return cls(
            download_chunk_size=int(os.environ.get("BOOTSHELL_DOWNLOAD_CHUNK", str(64 * 1024))),
            connect_timeout_seconds=int(os.environ.get("BOOTSHELL_CONNECT_TIMEOUT", "10")),
            read_timeout_seconds=int(os.environ.get("BOOTSHELL_READ_TIMEOUT", "60")),
            max_retries=int(os.environ.get("BOOTSHELL_MAX_RETRIES", "3")),
            child_health_check_seconds=float(os.environ.get("BOOTSHELL_CHILD_CHECK_SECONDS", "2.0")),
            trusted_keys=parse_trusted_keys(os.environ.get("BOOTSHELL_TRUSTED_KEYS", "")),
        )


@dataclass(frozen=True)
class LaunchOptions:
    """Command line of one bootstrap run.

    ``raw`` keeps the arguments exactly as given so they can be forwarded to a
    child process; ``named`` holds ``key=value`` overrides and ``unnamed`` the
    remaining positional tokens.
    """

    raw: tuple[str, ...] = ()
    named: Mapping[str, str] = field(default_factory=dict)
    unnamed: tuple[str, ...] = ()
    offline: bool = False
    ignore_ssl: bool = False
    stop_on_update_errors: bool = False
    log_file: str | None = None
    log_level: str = "INFO"

    @property
    def app_override(self) -> str | None:
        return self.named.get("app") or None

    @property
    def uri_override(self) -> str | None:
        return self.named.get("uri") or None

    @property
    def cache_dir_override(self) -> str | None:
        return self.named.get("cache-dir") or None


def _user_data_dir() -> Path:
    if sys.platform.startswith("win"):
        return Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    xdg = os.environ.get("XDG_DATA_HOME", "").strip()
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


def _all_users_dir() -> Path:
    if sys.platform.startswith("win"):
        return Path(os.environ.get("PROGRAMDATA", "C:/ProgramData"))
    if sys.platform == "darwin":
        return Path("/Library/Application Support")
    return Path("/usr/local/share")


def resolve_cache_dir(manifest_cache_dir: str | None, shell_root: Path, override: str | None = None) -> Path:
    raw = (override or manifest_cache_dir or "").strip()
    if not raw:
        path = shell_root
    elif raw.startswith(USERLIB_TOKEN):
        path = _user_data_dir() / raw[len(USERLIB_TOKEN):].lstrip("/\\")
    elif raw.startswith(ALLUSERS_TOKEN):
        path = _all_users_dir() / raw[len(ALLUSERS_TOKEN):].lstrip("/\\")
    else:
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = shell_root / path
    path.mkdir(parents=True, exist_ok=True)
    return path
