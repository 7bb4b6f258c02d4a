"""
CPU temperature safety and power source monitoring daemon.
"""

from .lifecycle import CancellationToken, WorkerOrchestrator
from .power import PowerSourceMonitor
from .safety import ThermalSafetyController, ThermalThresholds

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "WorkerOrchestrator",
    "PowerSourceMonitor",
    "ThermalSafetyController",
    "ThermalThresholds",
]
