from __future__ import annotations

import dataclasses
import tempfile
import unittest
from pathlib import Path

from bootshell.common.errors import ManifestParseError
from bootshell.common.manifest_io import load_manifest, parse_manifest, save_manifest
from bootshell.common.types import (
    ArtifactDescriptor,
    Manifest,
    applies_to_platform,
    compare_versions,
    host_platform_tag,
)


def _document(**overrides) -> dict:
    doc = {
        "sourceLocation": "https://mirror-a.example.com/app/",
        "version": "1.4.0",
        "acceptDowngrade": False,
        "whatsNewPage": "https://example.com/news",
        "lingeringUpdateScreen": True,
        "launchCommand": None,
        "launchClass": "demo.main:App",
        "parameters": "--headless",
        "preloadNativeLibraries": ["zstd", "crypto"],
        "artifacts": [
            {"path": "lib/core.zip", "size": 120, "platforms": ["*"]},
            {"path": "native/libfoo.so", "size": 64, "platforms": ["linux"]},
            {"path": "native/foo.dll", "size": 64, "platforms": ["win"]},
        ],
    }
    doc.update(overrides)
    return doc


class ManifestParseTests(unittest.TestCase):
    def test_parse_manifest(self) -> None:
        manifest = parse_manifest(_document())
        self.assertEqual(manifest.version, "1.4.0")
        self.assertEqual(manifest.launch_class, "demo.main:App")
        self.assertEqual(manifest.preload_native_libraries, ("zstd", "crypto"))
        self.assertEqual([a.path for a in manifest.artifacts], ["lib/core.zip", "native/libfoo.so", "native/foo.dll"])
        self.assertEqual(manifest.artifacts[0].platforms, frozenset())
        self.assertTrue(manifest.lingering_update_screen)

    def test_duplicate_artifact_path_rejected(self) -> None:
        doc = _document(artifacts=[{"path": "a.zip", "size": 1}, {"path": "a.zip", "size": 2}])
        with self.assertRaises(ManifestParseError):
            parse_manifest(doc)

    def test_negative_size_rejected(self) -> None:
        with self.assertRaises(ManifestParseError):
            parse_manifest(_document(artifacts=[{"path": "a.zip", "size": -1}]))

    def test_path_escaping_cache_rejected(self) -> None:
        with self.assertRaises(ManifestParseError):
            parse_manifest(_document(artifacts=[{"path": "../outside.zip", "size": 1}]))

    def test_missing_version_rejected(self) -> None:
        doc = _document()
        del doc["version"]
        with self.assertRaises(ManifestParseError):
            parse_manifest(doc)

    def test_flags_must_be_booleans(self) -> None:
        for key in ("acceptDowngrade", "lingeringUpdateScreen"):
            with self.subTest(key=key), self.assertRaises(ManifestParseError):
                parse_manifest(_document(**{key: "false"}))
        self.assertFalse(parse_manifest(_document(acceptDowngrade=None)).accept_downgrade)

    def test_save_and_load_preserves_equality(self) -> None:
        manifest = parse_manifest(_document())
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "app.json"
            save_manifest(path, manifest)
            loaded = load_manifest(path)
        self.assertEqual(loaded, manifest)
        self.assertEqual(loaded.source, manifest.source)

    def test_load_rejects_invalid_json(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "app.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(ManifestParseError):
                load_manifest(path)


    def test_load_rejects_invalid_utf8(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "app.json"
            path.write_bytes(b"\xff\xfe\x00\x01garbage")
            with self.assertRaises(ManifestParseError):
                load_manifest(path)


class ManifestEqualityTests(unittest.TestCase):
    def test_equality_ignores_source(self) -> None:
        a = parse_manifest(_document())
        b = parse_manifest(_document(sourceLocation="https://mirror-b.example.com/app/"))
        self.assertEqual(a, b)

    def test_equality_covers_other_fields(self) -> None:
        a = parse_manifest(_document())
        self.assertNotEqual(a, dataclasses.replace(a, parameters="--other"))
        self.assertNotEqual(a, dataclasses.replace(a, artifacts=a.artifacts[:1]))

    def test_is_newer_than(self) -> None:
        base = Manifest(version="1.9.0")
        self.assertTrue(Manifest(version="1.10.0").is_newer_than(base))
        self.assertFalse(Manifest(version="1.9").is_newer_than(base))
        self.assertFalse(base.is_newer_than(Manifest(version="1.9.0")))
        self.assertFalse(Manifest(version="1.8.9").is_newer_than(base))

    def test_compare_versions_orders_numbers_above_labels(self) -> None:
        self.assertGreater(compare_versions("2.0.0", "2.0.0-rc1"), 0)
        self.assertGreater(compare_versions("2.0.1", "2.0.rc1"), 0)
        self.assertGreater(compare_versions("20240102", "20240101"), 0)


class PlatformFilterTests(unittest.TestCase):
    def test_host_platform_tag(self) -> None:
        self.assertEqual(host_platform_tag("win32"), "win")
        self.assertEqual(host_platform_tag("darwin"), "mac")
        self.assertEqual(host_platform_tag("linux"), "linux")

    def test_wildcard_and_filters(self) -> None:
        self.assertTrue(applies_to_platform(frozenset(), "mac"))
        self.assertTrue(applies_to_platform(frozenset({"*"}), "mac"))
        self.assertTrue(applies_to_platform(frozenset({"mac", "linux"}), "mac"))
        self.assertFalse(applies_to_platform(frozenset({"win"}), "mac"))

    def test_platform_artifacts_uses_host_tag(self) -> None:
        manifest = parse_manifest(_document())
        self.assertEqual(
            [a.path for a in manifest.platform_artifacts("linux")],
            ["lib/core.zip", "native/libfoo.so"],
        )
        self.assertEqual(
            [a.path for a in manifest.platform_artifacts("win")],
            ["lib/core.zip", "native/foo.dll"],
        )
        artifact = ArtifactDescriptor(path="x", size=1, platforms=frozenset({"mac"}))
        self.assertTrue(artifact.load_for_current_platform("mac"))
        self.assertFalse(artifact.load_for_current_platform("linux"))


if __name__ == "__main__":
    unittest.main()
