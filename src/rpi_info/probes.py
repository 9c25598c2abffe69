#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""rpi_info.probes

Field probes for Raspberry Pi (and other Linux) hosts.

Each probe reads one signal from the machine through a
:class:`~rpi_info.core.SystemProbe` and returns a
:class:`~rpi_info.core.Field` with a fixed fallback chain and default.
Probes are grouped into report sections; :func:`collect_snapshot` runs every
group exactly once and freezes the results so that the printed report, the
saved file and the emailed CSV all describe the same moment.

Notes
-----
- A probe never raises for a missing source. The group runner still guards
  each group, so an unexpected parsing bug costs one section, not the run.
- Optional lines (CPU frequency, TX power, ...) are omitted when their
  source does not exist rather than being filled with a placeholder.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from .config import SOURCE_CPUINFO, SOURCE_DEVICE_TREE, Settings
from .core import (
    DISABLED,
    ENABLED,
    NOT_AVAILABLE,
    NOT_INSTALLED,
    NOT_SET,
    STATE_UNKNOWN,
    UNKNOWN,
    Field,
    SystemProbe,
    _human_bytes,
    _run_collector,
    _to_int,
)


logger = logging.getLogger(__name__)

ProbeGroup = Callable[[SystemProbe, Settings, datetime], List[Field]]


@dataclass(frozen=True)
class Snapshot:
    """Every field collected in one pass, grouped by report section."""

    generated: datetime
    hostname: str
    serial: str
    sections: Tuple[Tuple[str, Tuple[Field, ...]], ...]
    collectors: Dict[str, dict] = field(default_factory=dict, compare=False)

    def fields(self) -> List[Field]:
        return [f for _, fields in self.sections for f in fields]

    def get(self, key: str) -> Optional[Field]:
        for f in self.fields():
            if f.key == key:
                return f
        return None


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _cpuinfo_value(text: Optional[str], key: str) -> str:
    """Return the first ``key : value`` entry of /proc/cpuinfo (case-insensitive)."""
    for line in (text or "").splitlines():
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == key.lower():
            return value.strip()
    return ""


def _read_device_tree(system: SystemProbe, path: str) -> str:
    raw = system.read_text(path)
    if raw is None:
        return ""
    return raw.replace("\0", "").strip()


def _parse_os_release(text: Optional[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in (text or "").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def _first_line(text: str) -> str:
    for line in (text or "").splitlines():
        if line.strip():
            return line.strip()
    return ""


def _format_uptime(seconds: float) -> str:
    """Format a duration the way procps ``uptime -p`` does (365-day years, 7-day weeks)."""
    total_minutes = max(0, int(seconds // 60))
    years, rest = divmod(total_minutes, 365 * 24 * 60)
    weeks, rest = divmod(rest, 7 * 24 * 60)
    days, rest = divmod(rest, 24 * 60)
    hours, minutes = divmod(rest, 60)

    parts = []
    for amount, unit in (
        (years, "year"),
        (weeks, "week"),
        (days, "day"),
        (hours, "hour"),
        (minutes, "minute"),
    ):
        if amount:
            parts.append(f"{amount} {unit}{'' if amount == 1 else 's'}")
    if not parts:
        parts.append("0 minutes")
    return "up " + ", ".join(parts)


def find_boot_config(system: SystemProbe, settings: Settings) -> Optional[str]:
    """Return the first existing boot config.txt, if any."""
    for path in settings.boot_config_candidates:
        if system.exists(path):
            return path
    return None


def _systemctl_active(system: SystemProbe, unit: str) -> bool:
    return system.run(["systemctl", "is-active", "--quiet", unit])["returncode"] == 0


# ---------------------------------------------------------------------------
# Hardware identification
# ---------------------------------------------------------------------------

def _serial_from_cpuinfo(system: SystemProbe, settings: Settings) -> str:
    text = system.read_text(settings.cpuinfo_path)
    return _cpuinfo_value(text, "Serial").lstrip("0")


def _serial_from_device_tree(system: SystemProbe, settings: Settings) -> str:
    return _read_device_tree(system, settings.device_tree_serial_path)


def _model_from_cpuinfo(system: SystemProbe, settings: Settings) -> str:
    text = system.read_text(settings.cpuinfo_path)
    return _cpuinfo_value(text, "Model")


def _model_from_device_tree(system: SystemProbe, settings: Settings) -> str:
    return _read_device_tree(system, settings.device_tree_model_path)


SERIAL_STRATEGIES = {
    SOURCE_CPUINFO: _serial_from_cpuinfo,
    SOURCE_DEVICE_TREE: _serial_from_device_tree,
}

MODEL_STRATEGIES = {
    SOURCE_CPUINFO: _model_from_cpuinfo,
    SOURCE_DEVICE_TREE: _model_from_device_tree,
}


def probe_serial(system: SystemProbe, settings: Settings) -> Field:
    """Board serial number, falling back to ``unknown_<hostname>``."""
    for source in settings.serial_sources:
        value = SERIAL_STRATEGIES[source](system, settings)
        if value:
            return Field("Serial Number", value)
    return Field.absent("Serial Number", f"unknown_{system.hostname()}")


def probe_model(system: SystemProbe, settings: Settings) -> Field:
    """Board model string, falling back to ``Unknown Raspberry Pi``."""
    for source in settings.model_sources:
        value = MODEL_STRATEGIES[source](system, settings)
        if value:
            return Field("Model", value)
    return Field.absent("Model", "Unknown Raspberry Pi")


def probe_revision(system: SystemProbe, settings: Settings) -> Field:
    value = _cpuinfo_value(system.read_text(settings.cpuinfo_path), "Revision")
    if value:
        return Field("Revision", value)
    return Field.absent("Revision", UNKNOWN)


def probe_memory(system: SystemProbe, settings: Settings) -> Field:
    """Total RAM. No fallback: without psutil the value stays empty."""
    psutil = system.psutil
    if psutil is None:
        return Field.absent("Memory", "")
    try:
        total = psutil.virtual_memory().total
    except Exception:
        return Field.absent("Memory", "")
    return Field("Memory", _human_bytes(total) or "")


def probe_storage(system: SystemProbe, settings: Settings) -> Field:
    """Root filesystem size and usage. No fallback."""
    psutil = system.psutil
    if psutil is None:
        return Field.absent("Storage", "")
    try:
        usage = psutil.disk_usage("/")
    except Exception:
        return Field.absent("Storage", "")
    return Field(
        "Storage",
        f"{_human_bytes(usage.total)} (Used: {_human_bytes(usage.used)}, "
        f"Available: {_human_bytes(usage.free)}, {usage.percent:.0f}% used)",
    )


def collect_identification(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    return [
        probe_serial(system, settings),
        probe_model(system, settings),
        probe_revision(system, settings),
        probe_memory(system, settings),
        probe_storage(system, settings),
    ]


# ---------------------------------------------------------------------------
# CPU
# ---------------------------------------------------------------------------

def probe_temperature(system: SystemProbe, settings: Settings) -> Field:
    if not system.which("vcgencmd"):
        return Field.absent("Temperature", "vcgencmd not available")
    res = system.run(["vcgencmd", "measure_temp"])
    if res["ok"] and res["stdout"]:
        return Field("Temperature", res["stdout"])
    return Field.absent("Temperature", NOT_AVAILABLE)


def probe_cpu_frequency(system: SystemProbe, settings: Settings) -> Optional[Field]:
    khz = _to_int(system.read_text(settings.cpufreq_path))
    if khz is None:
        return None
    return Field("Current Frequency", f"{khz // 1000} MHz")


def collect_cpu(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    text = system.read_text(settings.cpuinfo_path)
    fields: List[Field] = []
    for key, cpuinfo_key in (
        ("CPU Model", "model name"),
        ("Hardware", "Hardware"),
    ):
        value = _cpuinfo_value(text, cpuinfo_key)
        fields.append(Field(key, value) if value else Field.absent(key, UNKNOWN))

    cores = system.cpu_count()
    fields.append(Field("Cores", str(cores)) if cores else Field.absent("Cores", UNKNOWN))

    bogomips = _cpuinfo_value(text, "BogoMIPS")
    fields.append(
        Field("BogoMIPS", bogomips) if bogomips else Field.absent("BogoMIPS", UNKNOWN)
    )

    freq = probe_cpu_frequency(system, settings)
    if freq is not None:
        fields.append(freq)
    fields.append(probe_temperature(system, settings))
    return fields


# ---------------------------------------------------------------------------
# Operating system and uptime
# ---------------------------------------------------------------------------

def collect_os(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    release = _parse_os_release(system.read_text(settings.os_release_path))
    fields: List[Field] = []
    for key, name in (
        ("Distribution", "PRETTY_NAME"),
        ("Version", "VERSION"),
        ("ID", "ID"),
        ("Codename", "VERSION_CODENAME"),
    ):
        value = release.get(name, "")
        fields.append(Field(key, value) if value else Field.absent(key, UNKNOWN))

    fields.append(Field("Kernel", system.kernel_release()))
    fields.append(Field("Architecture", system.machine()))
    fields.append(Field("Hostname", system.hostname()))
    return fields


def collect_uptime(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    psutil = system.psutil
    boot_ts = None
    if psutil is not None:
        try:
            boot_ts = float(psutil.boot_time())
        except Exception:
            boot_ts = None

    if boot_ts is None:
        return [Field.absent("Uptime", UNKNOWN), Field.absent("Boot time", UNKNOWN)]

    booted = datetime.fromtimestamp(boot_ts, tz=generated.tzinfo)
    return [
        Field("Uptime", _format_uptime((generated - booted).total_seconds())),
        Field("Boot time", booted.strftime("%Y-%m-%d %H:%M:%S")),
    ]


# ---------------------------------------------------------------------------
# USB
# ---------------------------------------------------------------------------

def collect_usb(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    fields: List[Field] = []

    if system.is_dir(settings.usb_devices_dir):
        controllers = [
            name for name in system.list_dir(settings.usb_devices_dir)
            if name.startswith("usb")
        ]
        fields.append(
            Field("USB Controllers", f"{len(controllers)} USB controllers detected")
        )
    else:
        fields.append(Field.absent("USB Controllers", UNKNOWN))

    if not system.which("lsusb"):
        fields.append(
            Field.absent("USB Devices", "lsusb not available - install usbutils", block=True)
        )
        return fields

    res = system.run(["lsusb"])
    if not res["ok"]:
        fields.append(Field.absent("USB Devices Found", UNKNOWN))
        return fields

    lines = [line for line in res["stdout"].splitlines() if line.strip()]
    fields.append(Field("USB Devices Found", str(len(lines))))
    if lines:
        fields.append(Field("USB Device List", "\n".join(lines), block=True))
    return fields


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

def probe_interfaces(system: SystemProbe, settings: Settings) -> Field:
    """Brief ``ip`` address listing without the loopback interface."""
    res = system.run(["ip", "-br", "addr", "show"])
    lines = []
    if res["ok"]:
        for line in res["stdout"].splitlines():
            tokens = line.split()
            if tokens and tokens[0] != "lo":
                lines.append(line.rstrip())
    if not lines:
        return Field.absent("Interfaces", "No interfaces found", block=True)
    return Field("Interfaces", "\n".join(lines), block=True)


def probe_mac_addresses(system: SystemProbe, settings: Settings) -> List[Field]:
    fields = []
    for iface in system.list_dir(settings.net_class_dir):
        if iface == "lo":
            continue
        mac = (system.read_text(f"{settings.net_class_dir}/{iface}/address") or "").strip()
        key = f"MAC {iface}"
        fields.append(Field(key, mac) if mac else Field.absent(key, NOT_AVAILABLE))
    return fields


def collect_network(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    return [probe_interfaces(system, settings)] + probe_mac_addresses(system, settings)


# ---------------------------------------------------------------------------
# Wireless
# ---------------------------------------------------------------------------

def probe_wifi_interface(system: SystemProbe) -> Optional[str]:
    """Name of the first wireless interface reported by ``iw dev``."""
    res = system.run(["iw", "dev"])
    if not res["ok"]:
        return None
    for line in res["stdout"].splitlines():
        tokens = line.split()
        if len(tokens) >= 2 and tokens[0] == "Interface":
            return tokens[1]
    return None


def collect_wifi(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    iface = probe_wifi_interface(system)
    if not iface:
        # Dependent lines are skipped rather than defaulted one by one.
        return [Field.absent("WiFi", "No WiFi interface detected", block=True)]

    fields = [Field("WiFi Interface", iface)]

    if system.which("iwgetid"):
        res = system.run(["iwgetid", "-r"])
        ssid = res["stdout"] if res["ok"] else ""
        fields.append(
            Field("Connected SSID", ssid) if ssid
            else Field.absent("Connected SSID", "Not connected")
        )

    res = system.run(["iw", "dev", iface, "info"])
    if res["ok"]:
        for line in res["stdout"].splitlines():
            tokens = line.split()
            if tokens and tokens[0] == "txpower" and len(tokens) >= 3:
                fields.append(Field("TX Power", f"{tokens[1]} {tokens[2]}"))
                break

    signal = system.read_text(settings.wireless_stats_path)
    if signal is not None and signal.strip():
        fields.append(Field("Wireless Signal", signal.rstrip(), block=True))
    return fields


# ---------------------------------------------------------------------------
# Bluetooth and GPIO
# ---------------------------------------------------------------------------

def collect_bluetooth(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    if not system.which("hciconfig"):
        return [
            Field.absent("Bluetooth", "hciconfig not available - install bluez", block=True)
        ]
    res = system.run(["hciconfig", "-a"])
    if res["ok"] and res["stdout"]:
        return [Field("Bluetooth", res["stdout"], block=True)]
    return [Field.absent("Bluetooth", "Bluetooth not available or disabled", block=True)]


def collect_gpio(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    fields = []
    if system.which("pinout"):
        fields.append(Field("Pinout Tool", "available via 'pinout' command"))
    else:
        fields.append(Field.absent("Pinout Tool", "not available"))

    if system.is_dir(settings.gpio_sysfs_dir):
        fields.append(Field("GPIO sysfs", settings.gpio_sysfs_dir))
    else:
        fields.append(Field.absent("GPIO sysfs", "not available"))

    chips = [n for n in system.list_dir(settings.dev_dir) if n.startswith("gpiochip")]
    fields.append(Field("GPIO Character Devices", str(len(chips))))
    return fields


# ---------------------------------------------------------------------------
# Boot configuration and packages
# ---------------------------------------------------------------------------

def _active_config_lines(text: str) -> List[str]:
    return [
        line.rstrip() for line in text.splitlines()
        if line.strip() and not line.startswith("#")
    ]


def collect_boot(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    path = find_boot_config(system, settings)
    if path is None:
        return [Field.absent("Config file", "Config file not found")]

    lines = _active_config_lines(system.read_text(path) or "")
    settings_field = (
        Field("Active Settings", "\n".join(lines), block=True) if lines
        else Field.absent("Active Settings", "No active settings", block=True)
    )
    return [Field("Config file", path), settings_field]


def probe_package(system: SystemProbe, name: str) -> Field:
    """First line of ``<name> --version`` or ``not installed``."""
    if not system.which(name):
        return Field.absent(name, NOT_INSTALLED)
    res = system.run([name, "--version"])
    version = _first_line(res["stdout"]) or _first_line(res["stderr"])
    return Field(name, version or "installed (version unknown)")


def collect_packages(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    return [probe_package(system, name) for name in settings.packages]


# ---------------------------------------------------------------------------
# Feature toggles (setup script summary)
# ---------------------------------------------------------------------------

def probe_network_manager(system: SystemProbe) -> Field:
    if not system.which("systemctl"):
        return Field.absent("Network manager", STATE_UNKNOWN)
    for unit in ("dhcpcd", "NetworkManager"):
        if _systemctl_active(system, unit):
            return Field("Network manager", unit)
    return Field.absent("Network manager", STATE_UNKNOWN)


def probe_swap(system: SystemProbe, settings: Settings) -> Field:
    psutil = system.psutil
    if psutil is None:
        return Field.absent("Swap", STATE_UNKNOWN)
    try:
        swap_mb = int(psutil.swap_memory().total // (1024 * 1024))
    except Exception:
        return Field.absent("Swap", STATE_UNKNOWN)
    state = ENABLED if swap_mb >= settings.swap_enabled_mb else DISABLED
    return Field("Swap", f"{state} ({swap_mb} MB)")


def probe_boot_flags(
    system: SystemProbe, boot_config: Optional[str]
) -> List[Field]:
    """SPI and I2C state from the ``dtparam`` marker lines."""
    text = system.read_text(boot_config) if boot_config else None
    if text is None:
        return [Field.absent("SPI", STATE_UNKNOWN), Field.absent("I2C", STATE_UNKNOWN)]

    lines = text.splitlines()
    fields = []
    for key, marker in (("SPI", "dtparam=spi=on"), ("I2C", "dtparam=i2c_arm=on")):
        on = any(line.startswith(marker) for line in lines)
        fields.append(Field(key, ENABLED if on else DISABLED))
    return fields


def probe_camera(system: SystemProbe) -> Field:
    if not system.which("vcgencmd"):
        return Field.absent("Camera", NOT_INSTALLED)
    res = system.run(["vcgencmd", "get_camera"])
    if "supported=1 detected=1" in res["stdout"]:
        return Field("Camera", "enabled and detected")
    return Field("Camera", "disabled or not detected")


def probe_vnc(system: SystemProbe, settings: Settings) -> Field:
    if not system.which("systemctl"):
        return Field.absent("VNC service", STATE_UNKNOWN)
    listing = system.run(["systemctl", "list-unit-files", settings.vnc_unit])
    if settings.vnc_unit not in listing["stdout"]:
        return Field.absent("VNC service", NOT_INSTALLED)
    res = system.run(["systemctl", "is-enabled", settings.vnc_unit])
    if res["stdout"].strip().startswith("enabled"):
        return Field("VNC service", ENABLED)
    return Field("VNC service", DISABLED)


def probe_firewall(system: SystemProbe) -> Field:
    if not system.which("ufw"):
        return Field.absent("Firewall (UFW)", NOT_INSTALLED)
    res = system.run(["ufw", "status"])
    if not res["ok"] and system.which("sudo"):
        # -n: never prompt for a password.
        res = system.run(["sudo", "-n", "ufw", "status"])
    if not res["ok"]:
        return Field.absent("Firewall (UFW)", STATE_UNKNOWN)
    if re.search(r"Status:\s*active\b", res["stdout"]):
        return Field("Firewall (UFW)", ENABLED)
    return Field("Firewall (UFW)", DISABLED)


def probe_git_identity(system: SystemProbe) -> List[Field]:
    fields = []
    for key, option in (("Git user", "user.name"), ("Git email", "user.email")):
        value = ""
        if system.which("git"):
            res = system.run(["git", "config", "--global", option])
            value = res["stdout"] if res["ok"] else ""
        fields.append(Field(key, value) if value else Field.absent(key, NOT_SET))
    return fields


def probe_python_requests(system: SystemProbe) -> Field:
    key = "Python 'requests' package"
    if not system.which("pip3"):
        return Field.absent(key, STATE_UNKNOWN)
    res = system.run(["pip3", "list"])
    if not res["ok"]:
        return Field.absent(key, STATE_UNKNOWN)
    for line in res["stdout"].splitlines():
        tokens = line.split()
        if tokens and tokens[0].lower() == "requests":
            return Field(key, "installed")
    return Field(key, NOT_INSTALLED)


def probe_setup_profile(system: SystemProbe, settings: Settings) -> Field:
    text = None
    if settings.setup_state_file is not None:
        text = system.read_text(str(settings.setup_state_file))
    for line in (text or "").splitlines():
        match = re.match(r"\s*(?:export\s+)?PROFILE=(.*)$", line)
        if match:
            tokens = match.group(1).strip().strip('"').strip("'").split()
            if tokens:
                return Field("Setup profile", tokens[0])
    return Field.absent("Setup profile", NOT_SET)


def collect_setup_summary(
    system: SystemProbe, settings: Settings, generated: datetime
) -> List[Field]:
    boot_config = find_boot_config(system, settings)
    release = _parse_os_release(system.read_text(settings.os_release_path))
    codename = release.get("VERSION_CODENAME", "")

    fields = [
        Field("Boot config", boot_config) if boot_config
        else Field.absent("Boot config", "(not found)"),
        probe_network_manager(system),
        Field("OS codename", codename) if codename
        else Field.absent("OS codename", UNKNOWN),
        probe_swap(system, settings),
    ]
    fields.extend(probe_boot_flags(system, boot_config))
    fields.append(probe_camera(system))
    fields.append(probe_vnc(system, settings))
    fields.append(probe_firewall(system))
    fields.extend(probe_git_identity(system))
    fields.append(probe_python_requests(system))
    fields.append(probe_setup_profile(system, settings))
    fields.append(Field("Hostname", system.hostname()))
    return fields


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

SECTION_PROBES: Tuple[Tuple[str, ProbeGroup], ...] = (
    ("Hardware Identification", collect_identification),
    ("CPU Information", collect_cpu),
    ("Operating System", collect_os),
    ("System Uptime", collect_uptime),
    ("USB Information", collect_usb),
    ("Network Interfaces", collect_network),
    ("WiFi Information", collect_wifi),
    ("Bluetooth Information", collect_bluetooth),
    ("GPIO Information", collect_gpio),
    ("Boot Configuration", collect_boot),
    ("Key Installed Packages", collect_packages),
    ("Setup Script Configuration Summary", collect_setup_summary),
)


def collect_snapshot(
    system: Optional[SystemProbe] = None,
    settings: Optional[Settings] = None,
) -> Snapshot:
    """Run every probe group once and freeze the results."""
    if system is None:
        system = SystemProbe(
            command_timeout=settings.command_timeout if settings else 10.0
        )
    if settings is None:
        settings = Settings.for_home(system.home())

    generated = system.now()
    hostname = system.hostname()
    sections = []
    collectors: Dict[str, dict] = {}

    for title, group in SECTION_PROBES:
        status, fields = _run_collector(title, group, system, settings, generated)
        collectors[title] = status
        if fields is None:
            fields = [Field.absent(title, "Unavailable (collection failed)")]
        sections.append((title, tuple(fields)))

    serial = next(
        (f.value for _, fields in sections for f in fields if f.key == "Serial Number"),
        f"unknown_{hostname}",
    )
    return Snapshot(
        generated=generated,
        hostname=hostname,
        serial=serial,
        sections=tuple(sections),
        collectors=collectors,
    )
