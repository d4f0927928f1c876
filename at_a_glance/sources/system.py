"""Battery level and failed systemd units."""

from __future__ import annotations

import glob
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

BATTERY_GLOB = "/sys/class/power_supply/BAT*/capacity"


@dataclass(frozen=True)
class SystemStatus:
    battery: Optional[int] = None
    failed_services: int = 0
    status: str = "OK"

    @property
    def battery_label(self) -> str:
        return "N/A" if self.battery is None else f"{self.battery}%"


def read_battery(pattern: str = BATTERY_GLOB) -> Optional[int]:
    for path in sorted(glob.glob(pattern)):
        try:
            return int(Path(path).read_text().strip())
        except (OSError, ValueError) as exc:
            logger.debug("Could not read battery info from %s: %s", path, exc)
    return None


def count_failed_services() -> int:
    try:
        result = subprocess.run(
            ["systemctl", "--failed", "--no-legend", "--plain"],
            capture_output=True, text=True, timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
        logger.debug("Could not check systemd services: %s", exc)
        return 0
    if result.returncode != 0:
        return 0
    return len([line for line in result.stdout.splitlines() if line.strip()])


def read_system_status() -> SystemStatus:
    battery = read_battery()
    failed = count_failed_services()
    status = f"{failed} failed services" if failed else "OK"
    return SystemStatus(battery=battery, failed_services=failed, status=status)
