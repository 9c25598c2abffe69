"""Report and record assembly.

Both views are built from one :class:`~rpi_info.probes.Snapshot`:

- the *report* is the sectioned, human-readable text that is printed,
  saved and used as the email body;
- the *record* is the flat ``Key,Value`` CSV attached to the email.

Everything here is pure string formatting over already collected fields.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from datetime import datetime
from typing import List, Tuple

from .core import Field
from .probes import Snapshot


RULE = "=" * 44
RECORD_HEADER = ("Key", "Value")

Record = Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class Section:
    title: str
    lines: Tuple[str, ...]


@dataclass(frozen=True)
class Report:
    generated: datetime
    sections: Tuple[Section, ...]


def render_field(field: Field) -> List[str]:
    """Lines for one field: verbatim for blocks, ``key: value`` otherwise."""
    if field.block:
        return field.value.splitlines() or [""]
    return [f"{field.key}: {field.value}"]


def build_report(snapshot: Snapshot) -> Report:
    sections = []
    for title, fields in snapshot.sections:
        lines: List[str] = []
        for field in fields:
            lines.extend(render_field(field))
        sections.append(Section(title=title, lines=tuple(lines)))
    return Report(generated=snapshot.generated, sections=tuple(sections))


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S %Z").rstrip()


def render_report(report: Report) -> str:
    """Render the full text document. Output ends with a single newline."""
    out = [
        RULE,
        "RASPBERRY PI SYSTEM INFORMATION",
        RULE,
        f"Generated: {format_timestamp(report.generated)}",
        RULE,
        "",
    ]
    for section in report.sections:
        out.append(f"=== {section.title} ===")
        out.extend(section.lines)
        out.append("")
    out.extend([RULE, "END OF REPORT", RULE])
    return "\n".join(out) + "\n"


def build_record(snapshot: Snapshot) -> Record:
    """Flatten the snapshot into ``(key, value)`` rows in report order."""
    return tuple((field.key, field.value) for field in snapshot.fields())


def render_record_csv(record: Record) -> str:
    """Serialize a record as CSV.

    Values are quoted only when they contain a comma, a quote or a line
    break; embedded quotes are doubled.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(RECORD_HEADER)
    writer.writerows(record)
    return buffer.getvalue()
