"""CPU temperature sensors."""

import glob
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

TEMP_PATTERN = re.compile(r"([+-]?\d+\.?\d*)\s*°C")

DEFAULT_HWMON_NAMES = ("coretemp", "k10temp", "zenpower", "cpu_thermal")


class HardwareError(Exception):
    """Hardware access error."""

    pass


@dataclass(frozen=True)
class ThermalReading:
    """Hottest CPU temperature seen in one sample."""

    value: float  # °C
    source: str  # Chip or hwmon device the value came from


class SensorsProvider:
    """Read CPU temperature from the ``sensors`` (lm-sensors) CLI."""

    def __init__(
        self,
        sensor_name: Optional[str] = None,
        sensor_label: Optional[str] = None,
        command_timeout: int = 5,
    ):
        self.sensor_name = sensor_name
        self.sensor_label = sensor_label
        self.command_timeout = command_timeout

    def sample(self) -> Optional[ThermalReading]:
        """
        Get the current CPU temperature.

        Returns:
            The labelled reading if a label is configured, otherwise the
            hottest temperature of the chip. None if no sensor answered.
        """
        cmd = ["sensors"]
        if self.sensor_name:
            cmd.append(self.sensor_name)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.command_timeout,
            )
        except (
            subprocess.CalledProcessError,
            FileNotFoundError,
            subprocess.TimeoutExpired,
        ) as e:
            logger.debug(f"sensors failed: {e}")
            return None

        temps = self.parse(result.stdout, self.sensor_label)
        if not temps:
            return None
        return ThermalReading(value=max(temps), source=self.sensor_name or "sensors")

    @staticmethod
    def parse(output: str, label: Optional[str] = None) -> List[float]:
        """Extract temperatures from ``sensors`` output, optionally by label."""
        temps = []
        for line in output.split("\n"):
            if label is not None and label not in line:
                continue
            # Only the current value, not the "(high = ..., crit = ...)" part
            current = line.split("(")[0]
            match = TEMP_PATTERN.search(current)
            if match:
                temps.append(float(match.group(1)))
        return temps


class HwmonProvider:
    """Read CPU temperature directly from ``/sys/class/hwmon``."""

    def __init__(
        self,
        device_names: Sequence[str] = DEFAULT_HWMON_NAMES,
        hwmon_root: str = "/sys/class/hwmon",
    ):
        self.device_names = tuple(device_names)
        self.hwmon_root = hwmon_root
        self.hwmon_path: Optional[Path] = None
        self.device_name: Optional[str] = None

        try:
            self._find_hwmon_device()
        except HardwareError as e:
            logger.warning(str(e))

    def _find_hwmon_device(self) -> None:
        """Find the first hwmon device with a known CPU driver name."""
        for hwmon_path in sorted(glob.glob(f"{self.hwmon_root}/hwmon*")):
            name_file = Path(hwmon_path) / "name"
            try:
                with open(name_file, "r") as f:
                    name = f.read().strip()
            except IOError:
                continue

            if name in self.device_names:
                self.hwmon_path = Path(hwmon_path)
                self.device_name = name
                return

        raise HardwareError(
            f"Could not find a CPU hwmon device (looked for: {', '.join(self.device_names)})"
        )

    def sample(self) -> Optional[ThermalReading]:
        """Get the hottest ``temp*_input`` of the CPU hwmon device."""
        if self.hwmon_path is None:
            return None

        temps = []
        for input_file in sorted(self.hwmon_path.glob("temp*_input")):
            try:
                with open(input_file, "r") as f:
                    temps.append(int(f.read().strip()) / 1000.0)
            except (IOError, ValueError):
                continue

        if not temps:
            return None
        return ThermalReading(value=max(temps), source=self.device_name)


def build_sensor(thermal_cfg: dict):
    """Create the sensor provider named by the ``thermal`` config section."""
    source = thermal_cfg.get("source", "sensors")

    if source == "sensors":
        return SensorsProvider(
            sensor_name=thermal_cfg.get("sensor_name"),
            sensor_label=thermal_cfg.get("sensor_label"),
            command_timeout=thermal_cfg.get("command_timeout", 5),
        )
    if source == "hwmon":
        return HwmonProvider(
            device_names=thermal_cfg.get("hwmon_names", DEFAULT_HWMON_NAMES),
        )

    raise HardwareError(f"Unknown temperature source: {source}")
