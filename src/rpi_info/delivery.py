"""Report delivery: save to a synced folder and/or send by email.

Two independent targets:

- :class:`FileSystemTarget` writes ``{serial}_{date}.txt`` into the first
  existing base directory (creating the first candidate when none exists).
- :class:`MessageTarget` hands a MIME message to the first mail transport
  that accepts it, in a fixed priority order: ``msmtp``, ``sendmail -t``,
  then the plain ``mail`` command (which cannot carry the CSV attachment).

Mail authentication and relay settings belong to the mail agent's own
configuration; nothing here handles credentials.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

from .config import DEFAULT_TRANSPORTS
from .core import SystemProbe, _human_bytes


logger = logging.getLogger(__name__)


class DeliveryError(RuntimeError):
    """Raised when no mail transport could send the report."""


@dataclass(frozen=True)
class ReportNaming:
    """Names derived from the host identity and the snapshot time."""

    hostname: str
    serial: str
    date: str
    time: str

    @classmethod
    def from_snapshot(cls, hostname: str, serial: str, moment: datetime) -> "ReportNaming":
        return cls(
            hostname=hostname,
            serial=serial,
            date=moment.strftime("%Y-%m-%d"),
            time=moment.strftime("%H:%M"),
        )

    @property
    def filename(self) -> str:
        return f"{self.serial}_{self.date}.txt"

    @property
    def subject(self) -> str:
        return (
            f"Raspberry Pi Info - {self.hostname} - {self.serial} - "
            f"{self.date} {self.time}"
        )

    @property
    def attachment_name(self) -> str:
        return f"{self.subject}.csv"


@dataclass
class FileSystemTarget:
    """Save the report under ``<first existing base dir>/<subdir>``."""

    base_dirs: Sequence[Path]
    subdir: str = "RaspberryPi_Info"


@dataclass
class MessageTarget:
    """Email the report to ``recipient`` via the first working transport."""

    recipient: str
    sender: Optional[str] = None
    transports: Tuple[str, ...] = DEFAULT_TRANSPORTS


@dataclass
class DeliveryResult:
    saved_path: Optional[Path] = None
    sent_via: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Persist
# ---------------------------------------------------------------------------

def resolve_base_dir(base_dirs: Sequence[Path]) -> Path:
    """Return the first existing candidate, creating the first one otherwise."""
    for candidate in base_dirs:
        if Path(candidate).is_dir():
            return Path(candidate)

    default = Path(base_dirs[0])
    logger.warning("Dropbox folder not found at standard locations")
    logger.info("Attempting to create %s directory...", default)
    default.mkdir(parents=True, exist_ok=True)
    return default


def persist_report(report_text: str, naming: ReportNaming, target: FileSystemTarget) -> Path:
    """Write the report as UTF-8 text, overwriting a same-day file.

    Raises ``OSError`` when the directory or the file cannot be written.
    """
    save_dir = resolve_base_dir(target.base_dirs) / target.subdir
    save_dir.mkdir(parents=True, exist_ok=True)

    path = save_dir / naming.filename
    path.write_text(report_text, encoding="utf-8")
    if not path.is_file():
        raise OSError(f"Failed to save file to: {path}")
    return path


# ---------------------------------------------------------------------------
# Send
# ---------------------------------------------------------------------------

def build_message(
    report_text: str,
    naming: ReportNaming,
    recipient: str,
    sender: str,
    record_csv: Optional[str] = None,
) -> EmailMessage:
    """Plain-text message, multipart with a CSV attachment when a record is given."""
    message = EmailMessage()
    message["To"] = recipient
    message["From"] = sender
    message["Subject"] = naming.subject
    message.set_content(report_text, charset="utf-8")
    if record_csv is not None:
        message.add_attachment(
            record_csv,
            subtype="csv",
            charset="utf-8",
            filename=naming.attachment_name,
        )
    return message


def _send_msmtp(system: SystemProbe, message: EmailMessage, recipient: str) -> bool:
    res = system.run(["msmtp", recipient], input_text=message.as_string())
    return bool(res["ok"])


def _send_sendmail(system: SystemProbe, message: EmailMessage, recipient: str) -> bool:
    res = system.run(["sendmail", "-t"], input_text=message.as_string())
    return bool(res["ok"])


def _send_mail(system: SystemProbe, message: EmailMessage, recipient: str) -> bool:
    if message.is_multipart():
        logger.warning(
            "The 'mail' command cannot send attachments; the CSV record was not attached"
        )
    body = message.get_body(preferencelist=("plain",))
    text = body.get_content() if body is not None else ""
    res = system.run(["mail", "-s", str(message["Subject"]), recipient], input_text=text)
    return bool(res["ok"])


TRANSPORTS: Dict[str, Callable[[SystemProbe, EmailMessage, str], bool]] = {
    "msmtp": _send_msmtp,
    "sendmail": _send_sendmail,
    "mail": _send_mail,
}


def send_report(
    system: SystemProbe,
    report_text: str,
    naming: ReportNaming,
    target: MessageTarget,
    record_csv: Optional[str] = None,
) -> str:
    """Send the report and return the name of the transport that worked.

    Transports are tried strictly in order; a failing or missing transport
    just moves on to the next one. Raises :class:`DeliveryError` once all
    of them are exhausted.
    """
    sender = target.sender or f"pi@{naming.hostname}"
    message = build_message(report_text, naming, target.recipient, sender, record_csv)

    logger.info("Sending email to: %s", target.recipient)
    if record_csv is not None:
        logger.info("Attaching record as: %s", naming.attachment_name)

    for name in target.transports:
        transport = TRANSPORTS.get(name)
        if transport is None:
            logger.debug("Unknown transport %r skipped", name)
            continue
        if not system.which(name):
            logger.debug("Transport %s not installed", name)
            continue
        if transport(system, message, target.recipient):
            logger.info("Email sent successfully via %s", name)
            return name
        logger.debug("Transport %s failed", name)

    raise DeliveryError("No email client found. Install msmtp, sendmail, or mailx")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def dispatch(
    system: SystemProbe,
    report_text: str,
    naming: ReportNaming,
    targets: Sequence[object],
    record_csv: Optional[str] = None,
) -> DeliveryResult:
    """Deliver to every target; one target failing never stops the other.

    Filesystem targets are handled before message targets.
    """
    result = DeliveryResult()
    ordered = sorted(targets, key=lambda t: 0 if isinstance(t, FileSystemTarget) else 1)

    for target in ordered:
        if isinstance(target, FileSystemTarget):
            logger.info("Saving to Dropbox...")
            try:
                path = persist_report(report_text, naming, target)
            except OSError as exc:
                logger.error("Failed to save report: %s", exc)
                result.errors["filesystem"] = str(exc)
                continue
            size = _human_bytes(path.stat().st_size)
            logger.info("Information saved to: %s (%s)", path, size)
            result.saved_path = path

        elif isinstance(target, MessageTarget):
            try:
                result.sent_via = send_report(
                    system, report_text, naming, target, record_csv
                )
            except DeliveryError as exc:
                logger.error("%s", exc)
                logger.info("To install msmtp: sudo apt-get install msmtp msmtp-mta")
                result.errors["message"] = str(exc)

        else:
            raise TypeError(f"Unsupported delivery target: {target!r}")

    return result
