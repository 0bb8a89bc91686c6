from bootshell.common.config import LaunchOptions, RuntimeConfig, ShellPaths
from bootshell.common.manifest_io import load_manifest, parse_manifest, save_manifest
from bootshell.common.types import ArtifactDescriptor, Manifest

__all__ = [
    "ArtifactDescriptor",
    "LaunchOptions",
    "Manifest",
    "RuntimeConfig",
    "ShellPaths",
    "load_manifest",
    "parse_manifest",
    "save_manifest",
]
