"""
Error taxonomy for the bootstrap sequence.

Recoverable errors (network, parse) let the bootstrap continue with the last
known-good cached state. Everything else aborts the sequence and is reported
once through the sequencer's error sink.
"""

from __future__ import annotations


class BootstrapError(RuntimeError):
    """Base class for bootstrap failures.

    Attributes:
        message: Error message
        phase: Bootstrap phase active when the error was raised, filled in by
               the sequencer when not known at the raise site
    """

    recoverable = False

    def __init__(self, message: str, phase: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase

    def __str__(self) -> str:
        if self.phase:
            return f"{self.message} (phase: {self.phase})"
        return self.message


class NetworkError(BootstrapError):
    """A manifest or artifact could not be fetched."""

    recoverable = True

    def __init__(self, message: str, location: str | None = None, phase: str | None = None) -> None:
        super().__init__(message, phase=phase)
        self.location = location


class ManifestParseError(BootstrapError):
    """A manifest document is malformed or violates its invariants."""

    recoverable = True


class ManifestSignatureError(ManifestParseError):
    """A remote manifest is unsigned or its signature does not verify."""


class ArtifactWriteError(BootstrapError):
    """An artifact could not be written to the cache directory."""

    def __init__(self, message: str, path: str | None = None, phase: str | None = None) -> None:
        super().__init__(message, phase=phase)
        self.path = path


class LinkError(BootstrapError):
    """A declared native library could not be preloaded."""

    def __init__(self, message: str, library: str | None = None, phase: str | None = None) -> None:
        super().__init__(message, phase=phase)
        self.library = library


class ResolutionError(BootstrapError):
    """The declared entry point could not be resolved from the cached artifacts."""

    def __init__(self, message: str, entry_point: str | None = None, phase: str | None = None) -> None:
        super().__init__(message, phase=phase)
        self.entry_point = entry_point


class ConfigurationError(BootstrapError):
    """The manifest declares neither a launch command nor an entry point."""
