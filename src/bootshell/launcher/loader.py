from __future__ import annotations

import ctypes
import ctypes.util
import importlib
import importlib.abc
import importlib.machinery
import importlib.util
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from bootshell.common.errors import LinkError, ResolutionError
from bootshell.common.types import Manifest, host_platform_tag


log = logging.getLogger(__name__)


def artifact_locations(manifest: Manifest, cache_dir: Path, host_tag: str | None = None) -> list[Path]:
    base = cache_dir.absolute()
    return [a.cache_path(base) for a in manifest.platform_artifacts(host_tag)]


def _location_key(path: str) -> str:
    return os.path.normcase(os.path.normpath(path))


class ArtifactFinder(importlib.abc.MetaPathFinder):
    """Meta path finder that resolves top-level modules from cached artifacts.

    Directories and archives (``.zip``, ``.whl``, ``.egg``) are searched the
    way ``sys.path`` entries are; single ``.py`` artifacts are importable by
    their stem. Submodules resolve through their parent package's ``__path__``.
    """

    def __init__(self, locations: Iterable[Path] = ()):
        self._search_path: list[str] = []
        self._modules: dict[str, str] = {}
        self._seen: set[str] = set()
        self.add_locations(locations)

    @property
    def locations(self) -> tuple[str, ...]:
        return tuple(self._search_path) + tuple(self._modules.values())

    def add_locations(self, locations: Iterable[Path]) -> None:
        added = 0
        for location in locations:
            path = str(location)
            key = _location_key(path)
            if key in self._seen:
                continue
            self._seen.add(key)
            if location.suffix == ".py" and location.is_file():
                self._modules.setdefault(location.stem, path)
            else:
                self._search_path.append(path)
            added += 1
        if added:
            importlib.invalidate_caches()
            log.debug("Artifact finder now covers %d location(s)", len(self._seen))

    def find_spec(self, fullname, path=None, target=None):
        if path is not None:
            return None
        module_file = self._modules.get(fullname)
        if module_file is not None:
            return importlib.util.spec_from_file_location(fullname, module_file)
        if not self._search_path:
            return None
        return importlib.machinery.PathFinder.find_spec(fullname, self._search_path)


def active_finder() -> ArtifactFinder | None:
    for finder in sys.meta_path:
        if isinstance(finder, ArtifactFinder):
            return finder
    return None


def install_finder(locations: Iterable[Path]) -> ArtifactFinder:
    """Extend the installed finder, or install a new one after the default finders."""
    finder = active_finder()
    if finder is not None:
        finder.add_locations(locations)
        return finder
    finder = ArtifactFinder(locations)
    sys.meta_path.append(finder)
    return finder


def _library_file_names(name: str) -> list[str]:
    if sys.platform.startswith("win"):
        return [f"{name}.dll", name]
    if sys.platform == "darwin":
        return [f"lib{name}.dylib", f"{name}.dylib", name]
    return [f"lib{name}.so", f"{name}.so", name]


def preload_native_library(name: str, search_dirs: Iterable[Path]) -> ctypes.CDLL:
    candidates: list[str] = []
    for directory in search_dirs:
        for file_name in _library_file_names(name):
            candidate = directory / file_name
            if candidate.is_file():
                candidates.append(str(candidate))
    found = ctypes.util.find_library(name)
    if found:
        candidates.append(found)
    candidates.append(name)

    errors: list[str] = []
    for candidate in candidates:
        try:
            handle = ctypes.CDLL(candidate)
        except OSError as exc:
            errors.append(f"{candidate}: {exc}")
            continue
        log.info("Preloaded native library %s from %s", name, candidate)
        return handle
    raise LinkError(f"Unable to load native library {name!r}: {'; '.join(errors)}", library=name)


def _import_target(name: str) -> Any:
    if ":" in name:
        module_name, _, attr_path = name.partition(":")
    else:
        try:
            return importlib.import_module(name)
        except ModuleNotFoundError as exc:
            # "pkg.module.Class" names an attribute, not a module.
            if exc.name != name or "." not in name:
                raise
        module_name, _, attr_path = name.rpartition(".")
    target: Any = importlib.import_module(module_name)
    for attr in attr_path.split("."):
        target = getattr(target, attr)
    return target


def resolve_entry_point(name: str) -> Any:
    try:
        return _import_target(name)
    except (ImportError, AttributeError, SyntaxError) as exc:
        raise ResolutionError(f"Unable to resolve entry point {name!r}: {exc}", entry_point=name) from exc


@dataclass
class LoadedEnvironment:
    finder: ArtifactFinder
    entry_point: Any = None
    native_libraries: list[ctypes.CDLL] = field(default_factory=list)


class LoaderBootstrap:
    def __init__(self, host_tag: str | None = None):
        self.host_tag = host_tag or host_platform_tag()

    def build(self, manifest: Manifest, cache_dir: Path) -> LoadedEnvironment:
        locations = artifact_locations(manifest, cache_dir, self.host_tag)
        search_dirs = [cache_dir.absolute()]
        for location in locations:
            if location.parent not in search_dirs:
                search_dirs.append(location.parent)

        libraries = [preload_native_library(name, search_dirs) for name in manifest.preload_native_libraries]

        present = [p for p in locations if p.exists()]
        if len(present) < len(locations):
            log.warning("%d of %d artifact(s) missing from %s", len(locations) - len(present), len(locations), cache_dir)
        finder = install_finder(present)

        env = LoadedEnvironment(finder=finder, native_libraries=libraries)
        if manifest.launch_class:
            log.info("Loading entry point %s", manifest.launch_class)
            env.entry_point = resolve_entry_point(manifest.launch_class)
        return env
