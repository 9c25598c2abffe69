"""Shared fixtures: an in-memory Raspberry Pi."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from rpi_info.config import Settings
from rpi_info.core import SystemProbe


NOW = datetime(2024, 1, 15, 14, 30, 5, tzinfo=timezone.utc)
MB = 1024 * 1024
GB = 1024 * MB

CPUINFO = """\
processor\t: 0
model name\t: ARMv7 Processor rev 3 (v7l)
BogoMIPS\t: 108.00
Features\t: half thumb fastmult vfp edsp neon vfpv3 tls vfpv4 idiva idivt vfpd32 lpae evtstrm crc32

processor\t: 1
model name\t: ARMv7 Processor rev 3 (v7l)
BogoMIPS\t: 108.00

Hardware\t: BCM2711
Revision\t: c03114
Serial\t\t: 00000000100000001abc
Model\t\t: Raspberry Pi 4 Model B Rev 1.4
"""

OS_RELEASE = """\
PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"
NAME="Debian GNU/Linux"
VERSION_ID="12"
VERSION="12 (bookworm)"
VERSION_CODENAME=bookworm
ID=debian
"""

BOOT_CONFIG = """\
# For more options and information see
# http://rptl.io/configtxt
dtparam=i2c_arm=on
#dtparam=spi=on

dtparam=audio=on
camera_auto_detect=1
"""

IW_DEV = """\
phy#0
\tInterface wlan0
\t\tifindex 3
\t\ttype managed
"""

IW_INFO = """\
Interface wlan0
\tifindex 3
\ttype managed
\twiphy 0
\ttxpower 31.00 dBm
"""

IP_BRIEF = """\
lo               UNKNOWN        127.0.0.1/8 ::1/128
eth0             DOWN
wlan0            UP             192.168.1.42/24 fe80::1/64
"""

LSUSB = """\
Bus 002 Device 001: ID 1d6b:0003 Linux Foundation 3.0 root hub
Bus 001 Device 002: ID 2109:3431 VIA Labs, Inc. Hub
Bus 001 Device 001: ID 1d6b:0002 Linux Foundation 2.0 root hub
"""


def ok(stdout: str = "", stderr: str = "") -> dict:
    return {"ok": True, "returncode": 0, "stdout": stdout.strip(), "stderr": stderr.strip(), "cmd": []}


def fail(returncode: int = 1, stderr: str = "") -> dict:
    return {"ok": False, "returncode": returncode, "stdout": "", "stderr": stderr, "cmd": []}


def fake_psutil(
    ram: int = 4 * GB,
    swap: int = 2048 * MB,
    uptime: timedelta = timedelta(days=1, hours=2, minutes=5),
) -> SimpleNamespace:
    return SimpleNamespace(
        virtual_memory=lambda: SimpleNamespace(total=ram),
        swap_memory=lambda: SimpleNamespace(total=swap),
        disk_usage=lambda path: SimpleNamespace(
            total=32 * GB, used=8 * GB, free=24 * GB, percent=25.0
        ),
        boot_time=lambda: (NOW - uptime).timestamp(),
    )


class FakeSystem(SystemProbe):
    """SystemProbe backed by dictionaries instead of the real machine."""

    def __init__(
        self,
        home: Path,
        files=None,
        dirs=None,
        commands=None,
        binaries=(),
        hostname: str = "pi4",
        psutil=None,
        now: datetime = NOW,
    ) -> None:
        super().__init__(command_timeout=1)
        self.files = dict(files or {})
        self.dirs = {k: list(v) for k, v in (dirs or {}).items()}
        self.commands = {tuple(k): v for k, v in (commands or {}).items()}
        self.binaries = set(binaries)
        self._home = Path(home)
        self._hostname = hostname
        self._now = now
        self.psutil = psutil
        self.calls = []
        self.reads = []

    def read_text(self, path):
        self.reads.append(path)
        return self.files.get(str(path))

    def exists(self, path):
        return str(path) in self.files or str(path) in self.dirs

    def is_dir(self, path):
        return str(path) in self.dirs

    def list_dir(self, path):
        return sorted(self.dirs.get(str(path), []))

    def which(self, name):
        return name in self.binaries

    def run(self, cmd, input_text=None):
        self.calls.append((tuple(cmd), input_text))
        return self.commands.get(tuple(cmd), fail(127, "not found"))

    def hostname(self):
        return self._hostname

    def kernel_release(self):
        return "6.1.0-rpi7-rpi-v8"

    def machine(self):
        return "aarch64"

    def cpu_count(self):
        return 4

    def home(self):
        return self._home

    def now(self):
        return self._now


@pytest.fixture(autouse=True)
def _reset_package_logger():
    log = logging.getLogger("rpi_info")
    yield
    log.handlers[:] = []
    log.propagate = True
    log.setLevel(logging.NOTSET)


@pytest.fixture
def settings(tmp_path) -> Settings:
    home = tmp_path / "home"
    return Settings.for_home(
        home,
        dropbox_dirs=(home / "Dropbox", home / "dropbox", tmp_path / "mnt" / "dropbox"),
    )


@pytest.fixture
def bare_system(tmp_path) -> FakeSystem:
    """A Linux box with /proc/cpuinfo and nothing else."""
    return FakeSystem(tmp_path / "home", files={"/proc/cpuinfo": "processor\t: 0\n"})


@pytest.fixture
def pi_system(tmp_path) -> FakeSystem:
    """A fully equipped Raspberry Pi 4."""
    home = tmp_path / "home"
    return FakeSystem(
        home,
        files={
            "/proc/cpuinfo": CPUINFO,
            "/proc/device-tree/model": "Raspberry Pi 4 Model B Rev 1.4\0",
            "/proc/device-tree/serial-number": "100000001abc\0",
            "/etc/os-release": OS_RELEASE,
            "/sys/devices/system/cpu/cpu0/cpufreq/scaling_cur_freq": "1800000\n",
            "/proc/net/wireless": "Inter-| sta-|   Quality\n wlan0: 0000   60.  -50.  -256\n",
            "/sys/class/net/eth0/address": "dc:a6:32:00:00:01\n",
            "/sys/class/net/wlan0/address": "dc:a6:32:00:00:02\n",
            "/boot/firmware/config.txt": BOOT_CONFIG,
            str(home / ".rpi_setup_state"): "STEP=4\nPROFILE=desktop\n",
        },
        dirs={
            "/sys/bus/usb/devices": ["1-0:1.0", "1-1", "usb1", "usb2"],
            "/sys/class/net": ["eth0", "lo", "wlan0"],
            "/sys/class/gpio": ["export", "gpiochip512", "unexport"],
            "/dev": ["gpiochip0", "gpiochip1", "null", "tty"],
        },
        binaries={
            "vcgencmd", "lsusb", "iw", "iwgetid", "hciconfig", "pinout",
            "systemctl", "ufw", "git", "pip3", "python3", "msmtp",
        },
        commands={
            ("vcgencmd", "measure_temp"): ok("temp=48.3'C"),
            ("vcgencmd", "get_camera"): ok("supported=1 detected=1, libcamera interfaces=0"),
            ("lsusb",): ok(LSUSB),
            ("ip", "-br", "addr", "show"): ok(IP_BRIEF),
            ("iw", "dev"): ok(IW_DEV),
            ("iw", "dev", "wlan0", "info"): ok(IW_INFO),
            ("iwgetid", "-r"): ok("HomeNet"),
            ("hciconfig", "-a"): ok("hci0:\tType: Primary  Bus: UART\n\tUP RUNNING"),
            ("systemctl", "is-active", "--quiet", "dhcpcd"): fail(3),
            ("systemctl", "is-active", "--quiet", "NetworkManager"): ok(),
            ("systemctl", "list-unit-files", "vncserver-x11-serviced.service"): ok(
                "UNIT FILE                      STATE    PRESET\n"
                "vncserver-x11-serviced.service disabled enabled\n"
            ),
            ("systemctl", "is-enabled", "vncserver-x11-serviced.service"): fail(1),
            ("ufw", "status"): ok("Status: inactive"),
            ("git", "config", "--global", "user.name"): ok("Pi Admin"),
            ("git", "config", "--global", "user.email"): fail(1),
            ("pip3", "list"): ok("Package    Version\n---------- -------\nrequests   2.31.0\n"),
            ("python3", "--version"): ok("Python 3.11.2"),
            ("git", "--version"): ok("git version 2.39.2"),
        },
        psutil=fake_psutil(),
    )
