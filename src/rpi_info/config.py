"""Collector configuration.

All paths, candidate lists and source priorities live here so that each
field has exactly one documented lookup order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


SOURCE_CPUINFO = "cpuinfo"
SOURCE_DEVICE_TREE = "device_tree"

DEFAULT_PACKAGES: Tuple[str, ...] = (
    "python3",
    "git",
    "nodejs",
    "docker",
    "nginx",
    "apache2",
)

DEFAULT_TRANSPORTS: Tuple[str, ...] = ("msmtp", "sendmail", "mail")


@dataclass
class Settings:
    """Where the collector looks for each signal and where it delivers."""

    cpuinfo_path: str = "/proc/cpuinfo"
    device_tree_serial_path: str = "/proc/device-tree/serial-number"
    device_tree_model_path: str = "/proc/device-tree/model"
    os_release_path: str = "/etc/os-release"
    cpufreq_path: str = "/sys/devices/system/cpu/cpu0/cpufreq/scaling_cur_freq"
    wireless_stats_path: str = "/proc/net/wireless"
    usb_devices_dir: str = "/sys/bus/usb/devices"
    net_class_dir: str = "/sys/class/net"
    gpio_sysfs_dir: str = "/sys/class/gpio"
    dev_dir: str = "/dev"
    boot_config_candidates: Tuple[str, ...] = (
        "/boot/firmware/config.txt",
        "/boot/config.txt",
    )

    # Ordered lookup strategies; the first source that yields a value wins.
    serial_sources: Tuple[str, ...] = (SOURCE_CPUINFO, SOURCE_DEVICE_TREE)
    model_sources: Tuple[str, ...] = (SOURCE_DEVICE_TREE, SOURCE_CPUINFO)

    packages: Tuple[str, ...] = DEFAULT_PACKAGES
    vnc_unit: str = "vncserver-x11-serviced.service"
    swap_enabled_mb: int = 1024

    dropbox_dirs: Tuple[Path, ...] = field(default_factory=tuple)
    dropbox_subdir: str = "RaspberryPi_Info"
    setup_state_file: Optional[Path] = None

    transports: Tuple[str, ...] = DEFAULT_TRANSPORTS
    command_timeout: float = 10.0

    @classmethod
    def for_home(cls, home: Path, **overrides) -> "Settings":
        """Build settings whose per-user paths are rooted at ``home``."""
        home = Path(home)
        values = {
            "dropbox_dirs": (
                home / "Dropbox",
                home / "dropbox",
                Path("/mnt/dropbox"),
            ),
            "setup_state_file": home / ".rpi_setup_state",
        }
        values.update(overrides)
        return cls(**values)
