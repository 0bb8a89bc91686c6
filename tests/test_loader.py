from __future__ import annotations

import sys
import tempfile
import unittest
import zipfile
from pathlib import Path

from bootshell.common.errors import LinkError, ResolutionError
from bootshell.common.types import ArtifactDescriptor, Manifest
from bootshell.launcher.loader import (
    ArtifactFinder,
    LoaderBootstrap,
    active_finder,
    artifact_locations,
    install_finder,
    preload_native_library,
    resolve_entry_point,
)


def _remove_finders() -> None:
    sys.meta_path[:] = [f for f in sys.meta_path if not isinstance(f, ArtifactFinder)]


class LoaderBootstrapTests(unittest.TestCase):
    modules = ("loader_demo_pkg", "loader_demo_pkg.entry", "loader_zip_mod", "loader_single")

    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.cache = Path(self._td.name)
        _remove_finders()

    def tearDown(self) -> None:
        _remove_finders()
        for name in self.modules:
            sys.modules.pop(name, None)
        self._td.cleanup()

    def _write_package(self) -> ArtifactDescriptor:
        pkg = self.cache / "app" / "loader_demo_pkg"
        pkg.mkdir(parents=True)
        (pkg / "__init__.py").write_text("", encoding="utf-8")
        (pkg / "entry.py").write_text(
            "class Runner:\n    def main(self):\n        return 'ran'\n",
            encoding="utf-8",
        )
        return ArtifactDescriptor(path="app", size=0)

    def _write_zip(self) -> ArtifactDescriptor:
        archive = self.cache / "lib" / "bundle.zip"
        archive.parent.mkdir(parents=True)
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("loader_zip_mod.py", "VALUE = 42\n")
        return ArtifactDescriptor(path="lib/bundle.zip", size=archive.stat().st_size)

    def test_build_resolves_entry_point_from_artifacts(self) -> None:
        manifest = Manifest(
            version="1",
            launch_class="loader_demo_pkg.entry:Runner",
            artifacts=(self._write_package(),),
        )
        env = LoaderBootstrap(host_tag="linux").build(manifest, self.cache)
        self.assertEqual(env.entry_point().main(), "ran")
        self.assertIs(active_finder(), env.finder)

    def test_dotted_attribute_names_resolve(self) -> None:
        self._write_package()
        install_finder([self.cache / "app"])
        target = resolve_entry_point("loader_demo_pkg.entry.Runner")
        self.assertEqual(target.__name__, "Runner")

    def test_zip_and_single_file_artifacts(self) -> None:
        zipped = self._write_zip()
        (self.cache / "loader_single.py").write_text("NAME = 'single'\n", encoding="utf-8")
        manifest = Manifest(
            version="1",
            artifacts=(zipped, ArtifactDescriptor(path="loader_single.py", size=1)),
        )
        LoaderBootstrap(host_tag="linux").build(manifest, self.cache)
        self.assertEqual(resolve_entry_point("loader_zip_mod:VALUE"), 42)
        self.assertEqual(resolve_entry_point("loader_single:NAME"), "single")

    def test_existing_finder_is_extended(self) -> None:
        first = install_finder([self.cache / "a"])
        second = install_finder([self.cache / "b", self.cache / "a"])
        self.assertIs(first, second)
        self.assertEqual(first.locations, (str(self.cache / "a"), str(self.cache / "b")))
        self.assertEqual(sum(isinstance(f, ArtifactFinder) for f in sys.meta_path), 1)

    def test_missing_entry_point_is_resolution_error(self) -> None:
        manifest = Manifest(version="1", launch_class="no_such_module_here:App")
        with self.assertRaises(ResolutionError) as ctx:
            LoaderBootstrap().build(manifest, self.cache)
        self.assertEqual(ctx.exception.entry_point, "no_such_module_here:App")

    def test_missing_native_library_is_link_error(self) -> None:
        with self.assertRaises(LinkError) as ctx:
            preload_native_library("definitely-not-a-real-library-xyz", [self.cache])
        self.assertEqual(ctx.exception.library, "definitely-not-a-real-library-xyz")

    def test_native_preload_failure_stops_build(self) -> None:
        manifest = Manifest(
            version="1",
            launch_class="no_such_module_here:App",
            preload_native_libraries=("definitely-not-a-real-library-xyz",),
        )
        with self.assertRaises(LinkError):
            LoaderBootstrap().build(manifest, self.cache)

    def test_artifact_locations_use_platform_filter(self) -> None:
        manifest = Manifest(
            version="1",
            artifacts=(
                ArtifactDescriptor(path="common.zip", size=1),
                ArtifactDescriptor(path="win.zip", size=1, platforms=frozenset({"win"})),
            ),
        )
        self.assertEqual(
            [p.name for p in artifact_locations(manifest, self.cache, "linux")],
            ["common.zip"],
        )


if __name__ == "__main__":
    unittest.main()
