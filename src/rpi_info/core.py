#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""rpi_info.core

Low-level building blocks shared by the probes and the delivery code:

- best-effort helpers to run commands and read files
- the :class:`Field` value every probe produces
- :class:`SystemProbe`, the single gateway to the local machine

Notes
-----
- Helpers never raise. A missing file, a missing binary, a non-zero exit
  status and a timeout all come back as "no data", so a single absent
  source can never abort a run.
- Everything the probes know about the host goes through
  :class:`SystemProbe`. Tests substitute a fake subclass to get a
  deterministic machine without real hardware.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import socket
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

JsonDict = Dict[str, Any]

UNKNOWN = "Unknown"
NOT_SET = "not set"
NOT_AVAILABLE = "N/A"

ENABLED = "enabled"
DISABLED = "disabled"
STATE_UNKNOWN = "unknown"
NOT_INSTALLED = "not installed"


@dataclass(frozen=True)
class Field:
    """A single named datum produced by one probe.

    ``present`` is False when no source was available and ``value`` holds
    the probe's display default. ``block`` marks multi-line values that the
    report prints verbatim instead of as ``key: value``.
    """

    key: str
    value: str
    present: bool = True
    block: bool = False

    @classmethod
    def absent(cls, key: str, default: str, block: bool = False) -> "Field":
        return cls(key=key, value=default, present=False, block=block)


def _safe_import(name: str):
    """Import a module by name, returning None on failure."""
    try:
        return __import__(name)
    except Exception:
        return None


def _run_cmd(
    cmd: List[str],
    timeout: float = 10,
    input_text: Optional[str] = None,
) -> JsonDict:
    """Run a command and return a structured result."""
    try:
        proc = subprocess.run(
            cmd,
            input=input_text,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
        return {
            "ok": proc.returncode == 0,
            "returncode": proc.returncode,
            "stdout": (proc.stdout or "").strip(),
            "stderr": (proc.stderr or "").strip(),
            "cmd": cmd,
        }
    except Exception as exc:
        return {
            "ok": False,
            "returncode": None,
            "stdout": "",
            "stderr": str(exc),
            "cmd": cmd,
        }


def _which(cmd: str) -> bool:
    """Return True if command exists in PATH."""
    return shutil.which(cmd) is not None


def _read_text(path: str) -> Optional[str]:
    """Read a text file. Returns None when it cannot be read."""
    try:
        with open(path, "r", encoding="utf-8", errors="ignore") as file:
            return file.read()
    except Exception:
        return None


def _human_bytes(num_bytes: Optional[float]) -> Optional[str]:
    """Convert a byte value to a human-friendly string."""
    if num_bytes is None:
        return None
    try:
        value = float(num_bytes)
    except Exception:
        return None

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024.0
        idx += 1
    return f"{value:.2f} {units[idx]}"


def _to_int(value: Any) -> Optional[int]:
    """Best-effort conversion to int."""
    try:
        return int(float(str(value).strip()))
    except Exception:
        return None


def _run_collector(name: str, func, *args, **kwargs) -> tuple[dict, object]:
    """Run a collector and capture status, timing, and errors."""
    start = time.perf_counter()
    status: dict = {"name": name, "attempted": True, "ok": False, "error": None}
    result = None
    try:
        result = func(*args, **kwargs)
        status["ok"] = True
    except Exception as exc:
        status["ok"] = False
        status["error"] = str(exc)
        logger.warning("Probe group '%s' failed: %s", name, exc)
    finally:
        status["duration_ms"] = int((time.perf_counter() - start) * 1000)
    logger.debug(
        "collector %s: %s (%s ms)",
        name,
        "OK" if status["ok"] else "FAIL",
        status["duration_ms"],
    )
    return status, result


class SystemProbe:
    """Read-only view of the local machine.

    Every signal a probe consumes (files, directories, commands, clock,
    psutil counters) is reached through one of these methods.
    """

    def __init__(self, command_timeout: float = 10) -> None:
        self.command_timeout = command_timeout
        self.psutil = _safe_import("psutil")

    def read_text(self, path: str) -> Optional[str]:
        return _read_text(path)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(path)

    def list_dir(self, path: str) -> List[str]:
        """Sorted directory entries, or an empty list if unreadable."""
        try:
            return sorted(os.listdir(path))
        except OSError:
            return []

    def which(self, name: str) -> bool:
        return _which(name)

    def run(self, cmd: List[str], input_text: Optional[str] = None) -> JsonDict:
        return _run_cmd(cmd, timeout=self.command_timeout, input_text=input_text)

    def hostname(self) -> str:
        return socket.gethostname()

    def kernel_release(self) -> str:
        return platform.release()

    def machine(self) -> str:
        return platform.machine()

    def cpu_count(self) -> Optional[int]:
        return os.cpu_count()

    def home(self) -> Path:
        return Path.home()

    def now(self) -> datetime:
        return datetime.now().astimezone()
