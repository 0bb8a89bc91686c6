from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Mapping

from bootshell.common.config import LaunchOptions, ShellPaths, resolve_cache_dir
from bootshell.common.errors import BootstrapError, ManifestParseError
from bootshell.common.manifest_io import (
    MANIFEST_FILE_NAME,
    decode_manifest_document,
    load_manifest,
    parse_manifest,
    save_manifest,
)
from bootshell.common.manifest_security import verify_manifest_signature
from bootshell.common.types import Manifest, join_location
from bootshell.launcher.context import BootstrapContext
from bootshell.launcher.transport import Transport, redact_credentials


log = logging.getLogger(__name__)


def cached_manifest_path(cache_dir: Path) -> Path:
    return cache_dir / MANIFEST_FILE_NAME


def _manifest_directory(location: str) -> str:
    trimmed = location.strip()
    for suffix in ("/" + MANIFEST_FILE_NAME, "\\" + MANIFEST_FILE_NAME):
        if trimmed.endswith(suffix):
            return trimmed[: -len(suffix)] + "/"
    return trimmed if trimmed.endswith(("/", "\\")) else trimmed + "/"


def resolve_remote_location(manifest: Manifest, options: LaunchOptions) -> str:
    if options.app_override:
        location = _manifest_directory(options.app_override)
        log.info("Loading manifest from 'app' parameter supplied: %s", redact_credentials(location))
        return location
    if options.uri_override:
        location = _manifest_directory(options.uri_override)
        log.info("Syncing files from 'uri' parameter supplied: %s", redact_credentials(location))
        return location
    return manifest.source


class ManifestStore:
    def __init__(self, paths: ShellPaths, transport: Transport, trusted_keys: Mapping[str, str] | None = None):
        self.paths = paths
        self.transport = transport
        self.trusted_keys = dict(trusted_keys or {})

    def load_baseline(self) -> Manifest:
        path = self.paths.baseline_manifest
        try:
            return load_manifest(path)
        except OSError as exc:
            raise BootstrapError(f"Unable to read the embedded manifest at {path}: {exc}") from exc

    def overlay_cached(self, manifest: Manifest, cache_dir: Path) -> Manifest:
        path = cached_manifest_path(cache_dir)
        if not path.exists():
            return manifest
        try:
            cached = load_manifest(path)
        except (OSError, ManifestParseError) as exc:
            log.warning("Ignoring unreadable cached manifest %s: %s", path, exc)
            return manifest
        log.info("Using cached manifest %s (version %s)", path, cached.version)
        return cached

    def fetch_remote(self, location: str) -> Manifest | None:
        """Fetch and parse ``<location>/app.json``; ``None`` on any failure."""
        if not location:
            return None
        manifest_location = join_location(location, MANIFEST_FILE_NAME)
        try:
            document = decode_manifest_document(self.transport.read_bytes(manifest_location))
            manifest = parse_manifest(document)
            if self.trusted_keys:
                verify_manifest_signature(document, manifest, self.trusted_keys)
            return manifest
        except Exception as exc:
            log.warning("No usable remote manifest at %s: %s", redact_credentials(manifest_location), exc)
            return None

    def reconcile(self, local: Manifest, remote: Manifest, fetched_from: str, cache_dir: Path) -> Manifest:
        if remote == local:
            log.info("Remote manifest matches local version %s", local.version)
            return local
        if not (remote.is_newer_than(local) or local.accept_downgrade):
            # Different but not newer, and downgrades not accepted: keep what we have.
            log.info(
                "Ignoring remote manifest version %s; local version %s is current",
                remote.version,
                local.version,
            )
            return local
        adopted = dataclasses.replace(remote, source=fetched_from)
        save_manifest(cached_manifest_path(cache_dir), adopted)
        log.info("Adopted remote manifest version %s (was %s)", adopted.version, local.version)
        return adopted

    def sync_manifest(self, context: BootstrapContext) -> Manifest:
        manifest = self.load_baseline()
        cache_dir = resolve_cache_dir(manifest.cache_dir, self.paths.shell_root, context.options.cache_dir_override)
        manifest = self.overlay_cached(manifest, cache_dir)
        context.cache_dir = cache_dir

        if context.options.offline:
            log.info("Offline mode selected; using cached manifest version %s", manifest.version)
            context.manifest = manifest
            return manifest

        location = manifest.source
        try:
            location = resolve_remote_location(manifest, context.options)
            remote = self.fetch_remote(location)
            if remote is None:
                log.info("No remote manifest at %s", redact_credentials(location))
            else:
                manifest = self.reconcile(manifest, remote, location, cache_dir)
        except Exception:
            log.warning("Unable to update manifest from %s", redact_credentials(location), exc_info=True)

        context.manifest = manifest
        return manifest

    def check_for_update(self, current: Manifest) -> Manifest | None:
        """Return the remote manifest when it differs from ``current``."""
        remote = self.fetch_remote(current.source)
        if remote is None or remote == current:
            return None
        return remote
