from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath


WILDCARD_PLATFORM = "*"
PLATFORM_TAGS = ("win", "mac", "linux")

_VERSION_SEPARATORS = re.compile(r"[.\-+_]")


def host_platform_tag(platform: str | None = None) -> str:
    p = (platform or sys.platform).lower()
    if p.startswith("win") or p == "cygwin":
        return "win"
    if p == "darwin":
        return "mac"
    return "linux"


def applies_to_platform(platforms: frozenset[str], host_tag: str) -> bool:
    if not platforms or WILDCARD_PLATFORM in platforms:
        return True
    return host_tag in platforms


def version_key(version: str) -> tuple[tuple[int, int | str], ...]:
    key: list[tuple[int, int | str]] = []
    for part in _VERSION_SEPARATORS.split(str(version or "").strip()):
        if not part:
            continue
        if part.isdigit():
            key.append((1, int(part)))
        else:
            key.append((0, part.lower()))
    return tuple(key)


def compare_versions(left: str, right: str) -> int:
    a = list(version_key(left))
    b = list(version_key(right))
    # Missing trailing parts count as zero: 1.2 == 1.2.0
    while len(a) < len(b):
        a.append((1, 0))
    while len(b) < len(a):
        b.append((1, 0))
    if a == b:
        return 0
    return 1 if a > b else -1


@dataclass(frozen=True)
class ArtifactDescriptor:
    path: str
    size: int
    platforms: frozenset[str] = frozenset()
    sha256: str | None = None

    def load_for_current_platform(self, host_tag: str | None = None) -> bool:
        return applies_to_platform(self.platforms, host_tag or host_platform_tag())

    def cache_path(self, cache_dir: Path) -> Path:
        return cache_dir.joinpath(*PurePosixPath(self.path).parts)


@dataclass
class Manifest:
    """In-memory application description.

    Equality is structural over every field except ``source``: the same
    content served from another mirror compares equal.
    """

    source: str = field(default="", compare=False)
    version: str = "0"
    accept_downgrade: bool = False
    whats_new_page: str | None = None
    lingering_update_screen: bool = False
    launch_command: str | None = None
    launch_class: str | None = None
    parameters: str | None = None
    preload_native_libraries: tuple[str, ...] = ()
    cache_dir: str | None = None
    artifacts: tuple[ArtifactDescriptor, ...] = ()

    def is_newer_than(self, other: "Manifest") -> bool:
        return compare_versions(self.version, other.version) > 0

    def platform_artifacts(self, host_tag: str | None = None) -> list[ArtifactDescriptor]:
        tag = host_tag or host_platform_tag()
        return [a for a in self.artifacts if a.load_for_current_platform(tag)]

    def artifact_url(self, artifact: ArtifactDescriptor) -> str:
        return join_location(self.source, artifact.path)


def join_location(base: str, relative: str) -> str:
    # Plain concatenation keeps UNC paths and query-less mirrors intact.
    separator = "" if base.endswith("/") else "/"
    return f"{base}{separator}{relative.lstrip('/')}"
