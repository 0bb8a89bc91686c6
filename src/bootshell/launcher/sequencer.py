from __future__ import annotations

import logging
import threading

from bootshell.common.config import LaunchOptions, RuntimeConfig, ShellPaths
from bootshell.common.errors import ArtifactWriteError, BootstrapError, ConfigurationError
from bootshell.launcher.artifact_fetcher import ArtifactFetcher
from bootshell.launcher.context import BootstrapContext, Phase
from bootshell.launcher.dispatch import BootstrapObserver, DispatchingObserver, ErrorReport, UiDispatcher
from bootshell.launcher.launch_strategy import LaunchStrategy, decide_launch
from bootshell.launcher.loader import LoaderBootstrap
from bootshell.launcher.manifest_store import ManifestStore
from bootshell.launcher.transport import Transport


log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SYNC_FAILED = 1
EXIT_NOT_CONFIGURED = 2
EXIT_BOOTSTRAP_FAILED = 3
EXIT_USAGE = 4


def cause_chain(error: BaseException) -> tuple[str, ...]:
    causes: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        causes.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return tuple(causes)


class BootstrapSequencer:
    """Runs manifest sync, artifact sync, loader bootstrap and launch, in order.

    The sequence runs on one background worker. Recoverable update errors are
    logged and the run continues with the cached state unless
    ``--stopOnUpdateErrors`` was given; every fatal error goes through
    ``report_error``.
    """

    def __init__(
        self,
        context: BootstrapContext,
        observer: BootstrapObserver,
        store: ManifestStore,
        fetcher: ArtifactFetcher,
        loader: LoaderBootstrap,
        strategy: LaunchStrategy,
    ):
        self.context = context
        self.observer = observer
        self.store = store
        self.fetcher = fetcher
        self.loader = loader
        self.strategy = strategy
        self.exit_code: int | None = None
        self.finished = threading.Event()

    @classmethod
    def create(
        cls,
        options: LaunchOptions,
        paths: ShellPaths,
        runtime: RuntimeConfig,
        observer: BootstrapObserver,
        dispatcher: UiDispatcher,
    ) -> "BootstrapSequencer":
        transport = Transport(runtime, verify_tls=not options.ignore_ssl)
        return cls(
            context=BootstrapContext(options=options, paths=paths, runtime=runtime),
            observer=DispatchingObserver(observer, dispatcher),
            store=ManifestStore(paths, transport, runtime.trusted_keys),
            fetcher=ArtifactFetcher(transport),
            loader=LoaderBootstrap(),
            strategy=LaunchStrategy(runtime, dispatcher),
        )

    @property
    def phase(self) -> str | None:
        return self.context.phase.value if self.context.phase else None

    def set_phase(self, phase: Phase) -> None:
        self.context.phase = phase
        self.observer.on_phase(phase.value)

    def report_error(self, title: str, error: BaseException) -> ErrorReport:
        if isinstance(error, BootstrapError) and error.phase is None:
            error.phase = self.phase
        report = ErrorReport(title=title, phase=self.phase, causes=cause_chain(error), error=error)
        log.error("%s", title, exc_info=(type(error), error, error.__traceback__))
        self.observer.on_error(report)
        return report

    def _phase_title(self) -> str:
        return f"Error during {self.phase} phase"

    def start(self) -> threading.Thread:
        worker = threading.Thread(target=self._work, daemon=True, name="bootshell-worker")
        worker.start()
        return worker

    def _work(self) -> None:
        try:
            self.run()
        finally:
            self.finished.set()

    def run(self) -> int:
        try:
            code = self._run_sequence()
        except SystemExit as exc:
            code = exc.code if isinstance(exc.code, int) else EXIT_OK
        except Exception as exc:
            self.report_error("Unexpected error during bootstrap", exc)
            code = EXIT_BOOTSTRAP_FAILED
        self.exit_code = code
        return code

    def _run_sequence(self) -> int:
        try:
            self._synchronize()
        except ArtifactWriteError as exc:
            self.report_error(self._phase_title(), exc)
            return EXIT_SYNC_FAILED
        except Exception as exc:
            log.warning("%s", self._phase_title(), exc_info=True)
            if self.context.options.stop_on_update_errors:
                self.report_error(self._phase_title(), exc)
                return EXIT_SYNC_FAILED

        try:
            return self._launch()
        except ConfigurationError as exc:
            self.report_error(self._phase_title(), exc)
            return EXIT_NOT_CONFIGURED
        except BootstrapError as exc:
            self.report_error(self._phase_title(), exc)
            return EXIT_BOOTSTRAP_FAILED

    def _synchronize(self) -> None:
        ctx = self.context
        self.set_phase(Phase.UPDATE)
        manifest = self.store.sync_manifest(ctx)

        self.set_phase(Phase.WRAPPER)
        self.observer.on_updater_ready(manifest)

        self.set_phase(Phase.SYNCFILE)
        log.info("Syncing files to %s", ctx.cache_dir)
        if ctx.options.offline:
            log.info("Offline mode selected; not checking artifacts")
            return
        ctx.files_updated = self.fetcher.sync(manifest, ctx.cache_dir, self.observer.on_progress)

    def _launch(self) -> int:
        ctx = self.context
        self.set_phase(Phase.CREATE)
        if ctx.manifest is None or ctx.cache_dir is None:
            raise BootstrapError("Unable to retrieve the application manifest")
        manifest = ctx.manifest
        environment = self.loader.build(manifest, ctx.cache_dir)

        self.set_phase(Phase.PREPARE)
        plan = decide_launch(manifest, ctx.cache_dir, environment.entry_point, ctx.options)
        app = self.strategy.prepare(plan)

        self.set_phase(Phase.START)
        log.info("Show what's new dialog: %s", ctx.files_updated)
        if ctx.files_updated and manifest.whats_new_page:
            self.observer.on_whats_new(manifest.whats_new_page)
        self.observer.on_close_update_screen(manifest.lingering_update_screen)

        self.set_phase(Phase.INIT)
        return self.strategy.launch(plan, app)
