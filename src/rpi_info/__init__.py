"""rpi_info package.

Raspberry Pi information collector: probes hardware and OS state, renders a
text report and a CSV record, and saves and/or emails the result.

Public API:
- Collection: collect_snapshot, SystemProbe, Settings
- Rendering: build_report, render_report, build_record, render_record_csv
- Delivery: dispatch, FileSystemTarget, MessageTarget, ReportNaming
"""

from .config import Settings
from .core import Field, SystemProbe
from .delivery import (
    DeliveryError,
    FileSystemTarget,
    MessageTarget,
    ReportNaming,
    dispatch,
)
from .probes import Snapshot, collect_snapshot
from .report import build_record, build_report, render_record_csv, render_report

__version__ = "0.1.0"

__all__ = [
    "DeliveryError",
    "Field",
    "FileSystemTarget",
    "MessageTarget",
    "ReportNaming",
    "Settings",
    "Snapshot",
    "SystemProbe",
    "build_record",
    "build_report",
    "collect_snapshot",
    "dispatch",
    "render_record_csv",
    "render_report",
]
