import email
import logging
from email import policy

import pytest

from rpi_info.delivery import (
    DeliveryError,
    FileSystemTarget,
    MessageTarget,
    ReportNaming,
    build_message,
    dispatch,
    persist_report,
    send_report,
)

from conftest import NOW, fail, ok


REPORT = "=== Hardware Identification ===\nSerial Number: abc123\n"
RECORD = 'Key,Value\nSerial Number,abc123\nStorage,"32 GB (Used: 8 GB, 25% used)"\n'


@pytest.fixture
def naming():
    return ReportNaming(hostname="pi4", serial="abc123", date="2024-01-15", time="14:30")


def test_naming_from_snapshot_time():
    naming = ReportNaming.from_snapshot("pi4", "100000001abc", NOW)
    assert naming.date == "2024-01-15"
    assert naming.time == "14:30"
    assert naming.filename == "100000001abc_2024-01-15.txt"


def test_subject_and_attachment_name(naming):
    assert naming.subject == "Raspberry Pi Info - pi4 - abc123 - 2024-01-15 14:30"
    assert naming.attachment_name == naming.subject + ".csv"


# --- persist ---------------------------------------------------------------

def test_persist_creates_default_folder_when_none_exist(tmp_path, naming):
    home = tmp_path / "home"
    target = FileSystemTarget(
        [home / "Dropbox", home / "dropbox", tmp_path / "mnt" / "dropbox"]
    )
    path = persist_report(REPORT, naming, target)
    assert path == home / "Dropbox" / "RaspberryPi_Info" / "abc123_2024-01-15.txt"
    assert path.read_text(encoding="utf-8") == REPORT


def test_persist_uses_first_existing_candidate(tmp_path, naming):
    second = tmp_path / "dropbox"
    second.mkdir()
    target = FileSystemTarget([tmp_path / "Dropbox", second])
    path = persist_report(REPORT, naming, target)
    assert path.parent == second / "RaspberryPi_Info"
    assert not (tmp_path / "Dropbox").exists()


def test_persist_overwrites_same_day_file(tmp_path, naming):
    target = FileSystemTarget([tmp_path / "Dropbox"])
    persist_report("old contents\n", naming, target)
    path = persist_report(REPORT, naming, target)
    assert path.read_text(encoding="utf-8") == REPORT
    assert len(list(path.parent.iterdir())) == 1


# --- message ---------------------------------------------------------------

def test_build_message_with_attachment(naming):
    message = build_message(REPORT, naming, "ops@example.com", "pi@pi4", RECORD)
    assert message["Subject"] == naming.subject
    assert message["To"] == "ops@example.com"
    assert message["From"] == "pi@pi4"
    assert message.is_multipart()

    parsed = email.message_from_string(message.as_string(), policy=policy.default)
    assert parsed.get_body(preferencelist=("plain",)).get_content() == REPORT
    attachments = list(parsed.iter_attachments())
    assert len(attachments) == 1
    assert attachments[0].get_filename() == naming.attachment_name
    assert attachments[0].get_content_type() == "text/csv"


def test_build_message_without_record_is_plain(naming):
    message = build_message(REPORT, naming, "ops@example.com", "pi@pi4")
    assert not message.is_multipart()
    assert message.get_content_type() == "text/plain"


def test_send_prefers_msmtp(pi_system, naming):
    pi_system.binaries.update({"msmtp", "sendmail", "mail"})
    pi_system.commands[("msmtp", "ops@example.com")] = ok()
    used = send_report(pi_system, REPORT, naming, MessageTarget("ops@example.com"), RECORD)
    assert used == "msmtp"

    mail_calls = [c for c in pi_system.calls if c[0][0] in ("msmtp", "sendmail", "mail")]
    assert len(mail_calls) == 1
    assert "Subject: Raspberry Pi Info - pi4 - abc123 - 2024-01-15 14:30" in mail_calls[0][1]
    assert "From: pi@pi4" in mail_calls[0][1]


def test_send_falls_through_in_priority_order(pi_system, naming, caplog):
    pi_system.binaries.discard("msmtp")
    pi_system.binaries.update({"sendmail", "mail"})
    pi_system.commands[("sendmail", "-t")] = fail(75)
    pi_system.commands[("mail", "-s", naming.subject, "ops@example.com")] = ok()

    with caplog.at_level(logging.WARNING, logger="rpi_info"):
        used = send_report(pi_system, REPORT, naming, MessageTarget("ops@example.com"), RECORD)

    assert used == "mail"
    assert [c[0][0] for c in pi_system.calls] == ["sendmail", "mail"]
    # The basic mail command only gets the plain report body.
    assert pi_system.calls[-1][1].rstrip("\n") == REPORT.rstrip("\n")
    assert "cannot send attachments" in caplog.text


def test_send_raises_when_all_transports_exhausted(bare_system, naming):
    with pytest.raises(DeliveryError, match="Install msmtp, sendmail, or mailx"):
        send_report(bare_system, REPORT, naming, MessageTarget("ops@example.com"))


# --- dispatch --------------------------------------------------------------

def test_dispatch_persists_even_when_send_fails(bare_system, naming, tmp_path, caplog):
    targets = [
        MessageTarget("ops@example.com"),
        FileSystemTarget([tmp_path / "Dropbox"]),
    ]
    with caplog.at_level(logging.INFO, logger="rpi_info"):
        result = dispatch(bare_system, REPORT, naming, targets, RECORD)

    assert result.saved_path == tmp_path / "Dropbox" / "RaspberryPi_Info" / naming.filename
    assert result.saved_path.read_text(encoding="utf-8") == REPORT
    assert result.sent_via is None
    assert "message" in result.errors
    assert "sudo apt-get install msmtp msmtp-mta" in caplog.text


def test_dispatch_persist_failure_does_not_stop_send(pi_system, naming, tmp_path):
    blocker = tmp_path / "Dropbox"
    blocker.write_text("a file where a directory is expected")
    pi_system.commands[("msmtp", "ops@example.com")] = ok()

    result = dispatch(
        pi_system,
        REPORT,
        naming,
        [FileSystemTarget([blocker]), MessageTarget("ops@example.com")],
        RECORD,
    )
    assert result.saved_path is None
    assert "filesystem" in result.errors
    assert result.sent_via == "msmtp"


def test_dispatch_with_no_targets(bare_system, naming):
    result = dispatch(bare_system, REPORT, naming, [])
    assert result.saved_path is None
    assert result.sent_via is None
    assert result.errors == {}
