"""
FocusGate — Main Entry Point

Runs one focus session from the command line: starts the blocking proxy,
points the system proxy at it and keeps it up until interrupted (or
until ``--minutes`` elapse), then ends the session and clears the system
proxy again.  ``--gui`` opens the PyQt6 control panel instead.

    focusgate --sites instagram.com,youtube.com --minutes 25
"""

import argparse
import atexit
import logging
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler

from config.settings import Settings
from engine          import SessionController, SystemProxyConfig

logger = logging.getLogger("FocusGate.Main")


def setup_logging(level: str = Settings.LOG_LEVEL,
                  log_file: str | None = Settings.LOG_FILE):
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    formatter = logging.Formatter(
        Settings.LOG_FORMAT, datefmt=Settings.LOG_DATE_FORMAT,
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=Settings.LOG_MAX_BYTES,
                backupCount=Settings.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Cannot open log file %s: %s", log_file, exc)
        else:
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)


def parse_sites(value: str) -> list[str]:
    return [s.strip() for s in value.split(",") if s.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="focusgate",
        description="Block distracting sites for a focus session.",
    )
    parser.add_argument(
        "--sites", type=parse_sites, default=[],
        help="comma-separated hostnames to block, e.g. youtube.com,x.com",
    )
    parser.add_argument(
        "--port", type=int, default=Settings.PROXY_PORT,
        help="first port to try (default: %(default)s)",
    )
    parser.add_argument(
        "--minutes", type=float, default=None,
        help="end the session automatically after this many minutes",
    )
    parser.add_argument(
        "--no-system-proxy", action="store_true",
        help="leave the OS proxy settings alone",
    )
    parser.add_argument(
        "--gui", action="store_true",
        help="open the control panel (requires PyQt6)",
    )
    parser.add_argument(
        "--log-level", default=Settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-file", default=Settings.LOG_FILE,
        help="rotating log file; pass '' to disable",
    )
    return parser


def run_session(controller: SessionController, sites: list[str],
                minutes: float | None, stop_event: threading.Event) -> int:
    """Run one session until *stop_event* is set or the time is up."""
    result = controller.start_session(sites)
    if not result["ok"]:
        logger.error("%s", result["error"])
        return 1

    logger.info("Focus session running on %s:%d, Ctrl+C to end",
                controller.host, controller.port)
    try:
        timeout = minutes * 60 if minutes is not None else None
        if not stop_event.wait(timeout):
            logger.info("Session time is up")
    finally:
        controller.end_session()
    return 0


def run_gui(controller: SessionController, sites: list[str]) -> int:
    try:
        from PyQt6.QtWidgets import QApplication
        from gui import ControlPanel
    except ImportError as exc:
        logger.error("The control panel needs PyQt6 (%s); "
                     "install focusgate[gui]", exc)
        return 1

    app = QApplication(sys.argv)
    app.setApplicationName(Settings.APP_NAME)
    app.setApplicationVersion(Settings.APP_VERSION)

    window = ControlPanel(controller, sites)
    window.show()
    return app.exec()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file or None)
    logger.info("%s v%s", Settings.APP_NAME, Settings.APP_VERSION)

    configurator = None if args.no_system_proxy else SystemProxyConfig()
    controller = SessionController(configurator=configurator, port=args.port)
    # never leave the OS pointing at a dead proxy
    atexit.register(controller.end_session)

    if args.gui:
        return run_gui(controller, args.sites)

    stop_event = threading.Event()

    def _on_signal(signum, _frame):
        logger.info("Received signal %d, ending session", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    return run_session(controller, args.sites, args.minutes, stop_event)


if __name__ == "__main__":
    sys.exit(main())
