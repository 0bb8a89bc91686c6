from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from bootshell.common.errors import ManifestParseError
from bootshell.common.manifest_security import validate_artifact_path
from bootshell.common.types import PLATFORM_TAGS, WILDCARD_PLATFORM, ArtifactDescriptor, Manifest


MANIFEST_FILE_NAME = "app.json"


def _optional_str(raw: dict[str, Any], key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _flag(raw: dict[str, Any], key: str) -> bool:
    value = raw.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ManifestParseError(f"Manifest field {key!r} must be true or false, got {value!r}")
    return value


def _parse_artifact(item: Any) -> ArtifactDescriptor:
    if not isinstance(item, dict):
        raise ManifestParseError(f"Manifest artifact must be an object, got {type(item).__name__}")
    path = validate_artifact_path(item.get("path", ""))
    try:
        size = int(item.get("size", 0))
    except (TypeError, ValueError) as exc:
        raise ManifestParseError(f"Invalid size for artifact {path!r}: {item.get('size')!r}") from exc
    if size < 0:
        raise ManifestParseError(f"Negative size for artifact {path!r}: {size}")

    platforms = frozenset(str(p).strip().lower() for p in item.get("platforms") or () if str(p).strip())
    unknown = platforms - set(PLATFORM_TAGS) - {WILDCARD_PLATFORM}
    if unknown:
        raise ManifestParseError(f"Unknown platform tags for artifact {path!r}: {sorted(unknown)}")
    if WILDCARD_PLATFORM in platforms:
        platforms = frozenset()
    return ArtifactDescriptor(
        path=path,
        size=size,
        platforms=platforms,
        sha256=_optional_str(item, "sha256"),
    )


def parse_manifest(data: Any) -> Manifest:
    if not isinstance(data, dict):
        raise ManifestParseError("Manifest document must be a JSON object.")
    if "version" not in data:
        raise ManifestParseError("Manifest missing fields: ['version']")

    artifacts: list[ArtifactDescriptor] = []
    seen_paths: set[str] = set()
    for item in data.get("artifacts") or ():
        artifact = _parse_artifact(item)
        if artifact.path in seen_paths:
            raise ManifestParseError(f"Manifest contains duplicate artifact path: {artifact.path}")
        seen_paths.add(artifact.path)
        artifacts.append(artifact)

    return Manifest(
        source=str(data.get("sourceLocation") or ""),
        version=str(data["version"]).strip(),
        accept_downgrade=_flag(data, "acceptDowngrade"),
        whats_new_page=_optional_str(data, "whatsNewPage"),
        lingering_update_screen=_flag(data, "lingeringUpdateScreen"),
        launch_command=_optional_str(data, "launchCommand"),
        launch_class=_optional_str(data, "launchClass"),
        parameters=_optional_str(data, "parameters"),
        preload_native_libraries=tuple(
            str(name).strip() for name in data.get("preloadNativeLibraries") or () if str(name).strip()
        ),
        cache_dir=_optional_str(data, "cacheDir"),
        artifacts=tuple(artifacts),
    )


def decode_manifest_document(payload: bytes) -> dict[str, Any]:
    try:
        data = json.loads(payload.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestParseError(f"Manifest is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestParseError("Manifest document must be a JSON object.")
    return data


def parse_manifest_bytes(payload: bytes) -> Manifest:
    return parse_manifest(decode_manifest_document(payload))


def manifest_to_dict(manifest: Manifest) -> dict[str, Any]:
    return {
        "sourceLocation": manifest.source,
        "version": manifest.version,
        "acceptDowngrade": manifest.accept_downgrade,
        "whatsNewPage": manifest.whats_new_page,
        "lingeringUpdateScreen": manifest.lingering_update_screen,
        "launchCommand": manifest.launch_command,
        "launchClass": manifest.launch_class,
        "parameters": manifest.parameters,
        "preloadNativeLibraries": list(manifest.preload_native_libraries),
        "cacheDir": manifest.cache_dir,
        "artifacts": [
            {
                "path": a.path,
                "size": a.size,
                "platforms": sorted(a.platforms) or [WILDCARD_PLATFORM],
                "sha256": a.sha256,
            }
            for a in manifest.artifacts
        ],
    }


def load_manifest(path: Path) -> Manifest:
    # Accept optional UTF-8 BOM for manifests edited with Windows tooling.
    try:
        with path.open("r", encoding="utf-8-sig") as fh:
            raw = json.load(fh)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestParseError(f"Manifest {path} is not valid JSON: {exc}") from exc
    return parse_manifest(raw)


def save_manifest(path: Path, manifest: Manifest) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(manifest_to_dict(manifest), fh, indent=2)
    tmp.replace(path)
