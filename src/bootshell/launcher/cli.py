from __future__ import annotations

import argparse
import logging
import re
import sys
from pathlib import Path

from bootshell import __version__ as BOOTSHELL_VERSION
from bootshell.common.config import LaunchOptions, RuntimeConfig, ShellPaths
from bootshell.common.logging_utils import configure_logging
from bootshell.launcher.dispatch import BootstrapObserver, LoggingObserver, UiDispatcher
from bootshell.launcher.sequencer import EXIT_BOOTSTRAP_FAILED, EXIT_USAGE, BootstrapSequencer


log = logging.getLogger(__name__)

_NAMED_ARG = re.compile(r"^(?:--)?([A-Za-z][\w.-]*)=(.*)$")


class _Parser(argparse.ArgumentParser):
    # Exit code 2 is reserved for "nothing to launch".
    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="bootshell",
        description="Self-updating application bootstrapper",
        allow_abbrev=False,
    )
    parser.add_argument("--offline", action="store_true", help="Skip manifest and artifact sync; use the cache.")
    parser.add_argument(
        "--ignoressl",
        action="store_true",
        help="Disable TLS certificate and hostname verification (diagnostics only).",
    )
    parser.add_argument(
        "--stopOnUpdateErrors",
        dest="stop_on_update_errors",
        action="store_true",
        help="Abort with exit code 1 when the update fails instead of launching the cached version.",
    )
    parser.add_argument("--logfile", help="Write diagnostics to this file.")
    parser.add_argument("--log-level", default="INFO", help="Log level.")
    parser.add_argument("--app", help="Directory (or app.json location) of the manifest to load.")
    parser.add_argument("--uri", help="Location to sync artifacts and the manifest from.")
    parser.add_argument("--cache-dir", dest="cache_dir", help="Override the cache directory.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {BOOTSHELL_VERSION}")
    return parser


def parse_options(argv: list[str] | None = None) -> LaunchOptions:
    raw = list(sys.argv[1:] if argv is None else argv)
    args, _ = build_parser().parse_known_args(raw)

    named: dict[str, str] = {}
    unnamed: list[str] = []
    for token in raw:
        match = _NAMED_ARG.match(token)
        if match:
            named[match.group(1)] = match.group(2)
        else:
            unnamed.append(token)
    for key, value in (("app", args.app), ("uri", args.uri), ("cache-dir", args.cache_dir)):
        if value:
            named[key] = value

    return LaunchOptions(
        raw=tuple(raw),
        named=named,
        unnamed=tuple(unnamed),
        offline=args.offline,
        ignore_ssl=args.ignoressl,
        stop_on_update_errors=args.stop_on_update_errors,
        log_file=named.get("logfile") or args.logfile,
        log_level=args.log_level,
    )


def main(argv: list[str] | None = None, observer: BootstrapObserver | None = None) -> int:
    options = parse_options(argv)
    paths = ShellPaths.default()
    log_path = Path(options.log_file) if options.log_file else paths.default_log_file
    configure_logging(log_path, level=options.log_level)
    log.info("bootshell %s starting (shell root %s)", BOOTSHELL_VERSION, paths.shell_root)

    dispatcher = UiDispatcher()
    sequencer = BootstrapSequencer.create(
        options,
        paths,
        RuntimeConfig.from_env(),
        observer or LoggingObserver(),
        dispatcher,
    )
    sequencer.start()
    dispatcher.run_until(sequencer.finished)

    code = sequencer.exit_code if sequencer.exit_code is not None else EXIT_BOOTSTRAP_FAILED
    log.info("Bootstrap finished with exit code %s", code)
    return code


if __name__ == "__main__":
    raise SystemExit(main())
