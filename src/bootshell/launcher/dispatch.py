from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from bootshell.common.types import Manifest


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorReport:
    title: str
    phase: str | None
    causes: tuple[str, ...]
    error: BaseException | None = field(default=None, compare=False)


class BootstrapObserver:
    """Presentation hooks called by the bootstrap core.

    The core never calls these directly from its worker; they are delivered
    through a ``UiDispatcher`` and run on the presentation thread in the
    order they were posted. The base class ignores every notification.
    """

    def on_phase(self, phase: str) -> None:
        pass

    def on_progress(self, fraction: float) -> None:
        pass

    def on_updater_ready(self, manifest: Manifest) -> None:
        pass

    def on_whats_new(self, url: str) -> None:
        pass

    def on_close_update_screen(self, lingering: bool) -> None:
        pass

    def on_error(self, report: ErrorReport) -> None:
        pass


class LoggingObserver(BootstrapObserver):
    """Headless observer: progress and phases go to the log."""

    def __init__(self, step: float = 0.1):
        self.step = step
        self._next_progress = 0.0

    def on_phase(self, phase: str) -> None:
        log.info("Bootstrap phase: %s", phase)

    def on_progress(self, fraction: float) -> None:
        if fraction >= self._next_progress or fraction >= 1.0:
            log.info("Download progress: %.0f%%", fraction * 100.0)
            self._next_progress = fraction + self.step

    def on_updater_ready(self, manifest: Manifest) -> None:
        log.info("Checking files for version %s", manifest.version)

    def on_whats_new(self, url: str) -> None:
        log.info("What's new in this version: %s", url)

    def on_error(self, report: ErrorReport) -> None:
        log.error("%s (phase: %s): %s", report.title, report.phase, " <- ".join(report.causes))


class UiDispatcher:
    """FIFO hand-off of callables from worker threads to the presentation thread.

    The thread that creates the dispatcher is the presentation thread; it must
    keep calling ``pump`` or ``run_until`` for posted work to run.
    """

    def __init__(self) -> None:
        self._events: queue.Queue[Callable[[], Any]] = queue.Queue()
        self._consumer = threading.get_ident()

    def on_presentation_thread(self) -> bool:
        return threading.get_ident() == self._consumer

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        self._events.put(lambda: fn(*args))

    def call_and_wait(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self.on_presentation_thread():
            return fn(*args)

        done = threading.Event()
        outcome: dict[str, Any] = {}

        def task() -> None:
            try:
                outcome["result"] = fn(*args)
            except BaseException as exc:
                outcome["error"] = exc
            finally:
                done.set()

        self._events.put(task)
        done.wait()
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("result")

    def pump(self, timeout: float = 0.0) -> int:
        handled = 0
        block = timeout > 0
        while True:
            try:
                task = self._events.get(timeout=timeout) if block else self._events.get_nowait()
            except queue.Empty:
                return handled
            block = False
            try:
                task()
            except Exception:
                log.exception("Presentation callback failed.")
            handled += 1

    def run_until(self, finished: threading.Event, poll_interval: float = 0.1) -> None:
        while not finished.is_set():
            self.pump(timeout=poll_interval)
        self.pump()


class DispatchingObserver(BootstrapObserver):
    """Forwards every notification to ``target`` through ``dispatcher``."""

    def __init__(self, target: BootstrapObserver, dispatcher: UiDispatcher):
        self.target = target
        self.dispatcher = dispatcher

    def on_phase(self, phase: str) -> None:
        self.dispatcher.post(self.target.on_phase, phase)

    def on_progress(self, fraction: float) -> None:
        self.dispatcher.post(self.target.on_progress, fraction)

    def on_updater_ready(self, manifest: Manifest) -> None:
        self.dispatcher.post(self.target.on_updater_ready, manifest)

    def on_whats_new(self, url: str) -> None:
        self.dispatcher.post(self.target.on_whats_new, url)

    def on_close_update_screen(self, lingering: bool) -> None:
        self.dispatcher.post(self.target.on_close_update_screen, lingering)

    def on_error(self, report: ErrorReport) -> None:
        self.dispatcher.post(self.target.on_error, report)
