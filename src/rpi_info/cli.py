"""Command-line interface for rpi_info."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import Settings
from .core import SystemProbe
from .delivery import FileSystemTarget, MessageTarget, ReportNaming, dispatch
from .probes import collect_snapshot
from .report import build_record, build_report, render_record_csv, render_report


logger = logging.getLogger("rpi_info")

EPILOG = """\
Examples:
  rpi-info                                  # Save to Dropbox only
  rpi-info --email user@example.com         # Email and save to Dropbox
  rpi-info -e user@example.com --no-dropbox # Email only
"""


class _LevelFormatter(logging.Formatter):
    """``[LEVEL] message`` with the level tag coloured on a terminal."""

    COLORS = {
        logging.DEBUG: "\033[0;36m",
        logging.INFO: "\033[0;34m",
        logging.WARNING: "\033[1;33m",
        logging.ERROR: "\033[0;31m",
        logging.CRITICAL: "\033[0;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool) -> None:
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        tag = f"[{record.levelname}]"
        if self.use_color:
            tag = f"{self.COLORS.get(record.levelno, '')}{tag}{self.RESET}"
        return f"{tag} {super().format(record)}"


def configure_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_LevelFormatter(use_color=sys.stderr.isatty()))
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rpi-info",
        description="Collect Raspberry Pi hardware and system information.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-e",
        "--email",
        metavar="EMAIL",
        default=None,
        help="Send results to email address.",
    )
    parser.add_argument(
        "--no-dropbox",
        action="store_true",
        help="Skip saving to Dropbox.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show per-probe debug output.",
    )
    return parser


def main(argv: list[str] | None = None, system: SystemProbe | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    system = system or SystemProbe()
    settings = Settings.for_home(system.home())
    system.command_timeout = settings.command_timeout

    if not system.exists(settings.cpuinfo_path):
        logger.error(
            "Cannot read %s - are you on a Raspberry Pi?", settings.cpuinfo_path
        )
        return 1

    print("==========================================")
    print("Raspberry Pi Information Collector")
    print("==========================================")
    print()

    logger.info("Collecting system information...")
    snapshot = collect_snapshot(system, settings)
    naming = ReportNaming.from_snapshot(snapshot.hostname, snapshot.serial, snapshot.generated)
    logger.info("Serial Number: %s", naming.serial)
    logger.info("Date: %s", naming.date)

    report_text = render_report(build_report(snapshot))
    print(report_text, end="")

    targets: list[object] = []
    if not args.no_dropbox:
        targets.append(FileSystemTarget(settings.dropbox_dirs, settings.dropbox_subdir))
    if args.email:
        targets.append(MessageTarget(args.email, transports=settings.transports))

    record_csv = render_record_csv(build_record(snapshot)) if args.email else None
    dispatch(system, report_text, naming, targets, record_csv)

    logger.info("Collection complete!")
    logger.info(
        "You can also save this output with: rpi-info > ~/rpi_info_%s_%s.txt",
        naming.serial,
        naming.date,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
