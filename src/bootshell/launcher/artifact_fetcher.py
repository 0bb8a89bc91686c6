from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from bootshell.common.errors import ArtifactWriteError
from bootshell.common.hashing import file_matches
from bootshell.common.types import ArtifactDescriptor, Manifest, host_platform_tag
from bootshell.launcher.transport import Transport, redact_credentials


log = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


def needs_update(artifact: ArtifactDescriptor, cache_dir: Path) -> bool:
    return not file_matches(artifact.cache_path(cache_dir), artifact.size, artifact.sha256)


class ArtifactFetcher:
    """Copies changed artifacts from the manifest source into the cache directory.

    Artifacts are fetched one at a time in manifest order. Any failure aborts
    the whole sync; files that already landed are skipped on the next run
    because they no longer need an update.
    """

    def __init__(self, transport: Transport, host_tag: str | None = None):
        self.transport = transport
        self.host_tag = host_tag or host_platform_tag()

    def _emit(self, callback: ProgressCallback | None, fraction: float) -> None:
        if callback is None:
            return
        try:
            callback(fraction)
        except Exception:
            log.exception("Progress callback failed.")

    def update_set(self, manifest: Manifest, cache_dir: Path) -> list[ArtifactDescriptor]:
        return [a for a in manifest.platform_artifacts(self.host_tag) if needs_update(a, cache_dir)]

    def sync(self, manifest: Manifest, cache_dir: Path, progress: ProgressCallback | None = None) -> bool:
        pending = self.update_set(manifest, cache_dir)
        if not pending:
            log.info("All artifacts in %s are up to date", cache_dir)
            return False

        total = sum(a.size for a in pending)
        log.info("Updating %d artifact(s), %d bytes, into %s", len(pending), total, cache_dir)
        written = 0
        reported = 0.0
        for artifact in pending:
            written = self._fetch_one(manifest, artifact, cache_dir, written, total, progress)
            if total > 0:
                reported = max(reported, min(written / total, 1.0))

        if reported < 1.0:
            self._emit(progress, 1.0)
        return True

    def _fetch_one(
        self,
        manifest: Manifest,
        artifact: ArtifactDescriptor,
        cache_dir: Path,
        written: int,
        total: int,
        progress: ProgressCallback | None,
    ) -> int:
        target = artifact.cache_path(cache_dir).absolute()
        partial = target.with_name(target.name + ".part")
        url = manifest.artifact_url(artifact)
        log.info("Downloading %s -> %s", redact_credentials(url), target)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fh = partial.open("wb")
        except OSError as exc:
            raise ArtifactWriteError(f"Cannot write {target}: {exc}", path=str(target)) from exc

        last = min(written / total, 1.0) if total > 0 else 0.0
        try:
            with fh, self.transport.open_stream(url) as chunks:
                for chunk in chunks:
                    try:
                        fh.write(chunk)
                    except OSError as exc:
                        raise ArtifactWriteError(f"Cannot write {target}: {exc}", path=str(target)) from exc
                    written += len(chunk)
                    if total > 0:
                        last = max(last, min(written / total, 1.0))
                        self._emit(progress, last)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        try:
            partial.replace(target)
        except OSError as exc:
            raise ArtifactWriteError(f"Cannot move {partial} into place: {exc}", path=str(target)) from exc
        return written
