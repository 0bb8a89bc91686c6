from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping, Union

import bootshell
from bootshell.common.config import LaunchOptions, RuntimeConfig
from bootshell.common.errors import ConfigurationError
from bootshell.common.types import Manifest
from bootshell.launcher.dispatch import UiDispatcher
from bootshell.launcher.loader import artifact_locations


log = logging.getLogger(__name__)

CHILD_RUNNER_MODULE = "bootshell.launcher.child"


def _split_parameters(text: str | None) -> list[str]:
    if not text:
        return []
    return shlex.split(text, posix=os.name != "nt")


@dataclass(frozen=True)
class LaunchParameters:
    raw: tuple[str, ...] = ()
    unnamed: tuple[str, ...] = ()
    named: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_args(cls, args: list[str]) -> "LaunchParameters":
        named: dict[str, str] = {}
        unnamed: list[str] = []
        for arg in args:
            if arg.startswith("--") and "=" in arg:
                key, _, value = arg[2:].partition("=")
                named[key] = value
            else:
                unnamed.append(arg)
        return cls(raw=tuple(args), unnamed=tuple(unnamed), named=MappingProxyType(named))

    @classmethod
    def for_application(cls, options: LaunchOptions, manifest: Manifest) -> "LaunchParameters":
        """Shell arguments followed by the manifest's own ``parameters``."""
        base = cls(raw=options.raw, unnamed=options.unnamed, named=MappingProxyType(dict(options.named)))
        extra = cls.from_args(_split_parameters(manifest.parameters))
        return base.combined_with(extra)

    def combined_with(self, other: "LaunchParameters") -> "LaunchParameters":
        named = dict(self.named)
        named.update(other.named)
        return LaunchParameters(
            raw=self.raw + other.raw,
            unnamed=self.unnamed + other.unnamed,
            named=MappingProxyType(named),
        )


class Application:
    """Contract for applications that run inside the bootstrap process.

    ``start`` runs on the presentation thread and may block for the lifetime
    of the application; an ``int`` return value becomes the exit code.
    """

    def init(self) -> None:
        pass

    def start(self, parameters: LaunchParameters) -> int | None:
        raise NotImplementedError

    def stop(self) -> None:
        pass


@dataclass(frozen=True)
class InProcessLaunch:
    app_class: type
    parameters: LaunchParameters


@dataclass(frozen=True)
class CommandLaunch:
    command: str
    executable: str
    arguments: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.arguments]


@dataclass(frozen=True)
class ModulePathLaunch:
    argv: tuple[str, ...]
    entry_point: str
    module_path: str


LaunchPlan = Union[InProcessLaunch, CommandLaunch, ModulePathLaunch]


def build_command(cache_dir: Path, command: str, parameters: str | None) -> str:
    suffix = f" {parameters}" if parameters else ""
    return f"{cache_dir.absolute()}{os.sep}{command}{suffix}"


def command_launch(cache_dir: Path, command: str, parameters: str | None) -> CommandLaunch:
    # The cache dir may contain spaces; only the parameters are split.
    return CommandLaunch(
        command=build_command(cache_dir, command, parameters),
        executable=f"{cache_dir.absolute()}{os.sep}{command}",
        arguments=tuple(_split_parameters(parameters)),
    )


def merge_pythonpath(parts: list[str], existing: str = "") -> str:
    merged: list[str] = []
    seen: set[str] = set()

    for part in [*parts, *existing.split(os.pathsep)]:
        p = str(part).strip()
        if not p:
            continue
        key = os.path.normcase(os.path.normpath(p))
        if key in seen:
            continue
        seen.add(key)
        merged.append(p)
    return os.pathsep.join(merged)


def build_child_env() -> dict[str, str]:
    """Environment for child interpreters, with bootshell itself importable."""
    env = os.environ.copy()
    package_root = Path(bootshell.__file__).resolve().parents[1]
    env["PYTHONPATH"] = merge_pythonpath([str(package_root)], env.get("PYTHONPATH", ""))
    return env


def build_module_path_argv(
    manifest: Manifest,
    cache_dir: Path,
    raw_args: tuple[str, ...],
    python_exe: str | None = None,
    host_tag: str | None = None,
) -> ModulePathLaunch:
    module_path = os.pathsep.join(str(p) for p in artifact_locations(manifest, cache_dir, host_tag))
    entry = manifest.launch_class or ""
    argv = (python_exe or sys.executable, "-m", CHILD_RUNNER_MODULE, module_path, *raw_args, entry)
    return ModulePathLaunch(argv=argv, entry_point=entry, module_path=module_path)


def is_application_class(entry_point: Any) -> bool:
    return isinstance(entry_point, type) and issubclass(entry_point, Application)


def decide_launch(
    manifest: Manifest,
    cache_dir: Path,
    entry_point: Any,
    options: LaunchOptions,
    python_exe: str | None = None,
    host_tag: str | None = None,
) -> LaunchPlan:
    if is_application_class(entry_point):
        return InProcessLaunch(
            app_class=entry_point,
            parameters=LaunchParameters.for_application(options, manifest),
        )
    if manifest.launch_command:
        return command_launch(cache_dir, manifest.launch_command, manifest.parameters)
    if manifest.launch_class:
        return build_module_path_argv(manifest, cache_dir, options.raw, python_exe=python_exe, host_tag=host_tag)
    raise ConfigurationError("Could not start the application: neither launchCommand nor launchClass is defined")


class LaunchStrategy:
    def __init__(
        self,
        runtime: RuntimeConfig,
        dispatcher: UiDispatcher,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.runtime = runtime
        self.dispatcher = dispatcher
        self.popen = popen

    def prepare(self, plan: LaunchPlan) -> Application | None:
        if not isinstance(plan, InProcessLaunch):
            return None
        app = self.dispatcher.call_and_wait(plan.app_class)
        app.init()
        return app

    def launch(self, plan: LaunchPlan, app: Application | None = None) -> int:
        if isinstance(plan, InProcessLaunch):
            if app is None:
                app = self.prepare(plan)
            return self.dispatcher.call_and_wait(self._run_application, app, plan.parameters)
        if isinstance(plan, CommandLaunch):
            log.info("Execute command '%s'", plan.command)
            process = self.popen(plan.argv, stderr=subprocess.PIPE)
        else:
            log.info("Starting %s in a new process: %s", plan.entry_point, list(plan.argv))
            process = self.popen(list(plan.argv), stderr=subprocess.PIPE, env=build_child_env())
        return self.supervise(process)

    @staticmethod
    def _run_application(app: Application, parameters: LaunchParameters) -> int:
        try:
            result = app.start(parameters)
        finally:
            app.stop()
        return result if isinstance(result, int) else 0

    def supervise(self, process: subprocess.Popen) -> int:
        def drain() -> None:
            stream = process.stderr
            if stream is None:
                return
            with stream:
                for line in iter(stream.readline, b""):
                    log.error("%s", line.decode("utf-8", errors="replace").rstrip())

        # Log stderr for the first seconds to capture early start failures.
        errors = threading.Thread(target=drain, daemon=True, name="bootshell-child-stderr")
        errors.start()
        errors.join(self.runtime.child_health_check_seconds)

        code = process.poll()
        if code is None and not errors.is_alive():
            try:
                code = process.wait(timeout=0.5)
            except subprocess.TimeoutExpired:
                code = None
        if code is not None:
            log.info("Process exit value: %s", code)
        else:
            log.info("Successfully started subprocess pid=%s", process.pid)
        return 0
