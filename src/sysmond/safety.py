"""CPU temperature safety: thresholds, hysteresis and emergency shutdown."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .hardware import ThermalReading
from .lifecycle import DAEMON_NAME, CancellationToken
from .notify import Notifier
from .shutdown import ShutdownAgent, ShutdownKind, ShutdownReason
from .store import (
    CRITICAL_CPU_TEMPERATURE,
    CRITICAL_MARGIN,
    DANGEROUS_CPU_TEMPERATURE,
    SAFE_CPU_TEMPERATURE,
    SAFE_MARGIN,
    UNSAFE_SHUTDOWN_PENDING,
    FlagStore,
    StoreError,
)

logger = logging.getLogger(__name__)

WORKER_NAME = "cpu_temp_safety"


@dataclass(frozen=True)
class ThermalThresholds:
    """
    Temperature cutoffs in °C.

    Critical is kept at least CRITICAL_MARGIN below dangerous and safe at
    least SAFE_MARGIN below critical.
    """

    safe: float = 65.0
    critical: float = 80.0
    dangerous: float = 85.0

    def __post_init__(self):
        # Frozen dataclass: coerce through object.__setattr__
        if self.critical > self.dangerous - CRITICAL_MARGIN:
            object.__setattr__(self, "critical", self.dangerous - CRITICAL_MARGIN)
        if self.safe > self.critical - SAFE_MARGIN:
            object.__setattr__(self, "safe", self.critical - SAFE_MARGIN)

    @classmethod
    def from_store(cls, store: FlagStore) -> "ThermalThresholds":
        return cls(
            safe=store.get(SAFE_CPU_TEMPERATURE),
            critical=store.get(CRITICAL_CPU_TEMPERATURE),
            dangerous=store.get(DANGEROUS_CPU_TEMPERATURE),
        )


class ThermalState(Enum):
    COOL = "cool"
    CRITICAL = "critical"
    DANGEROUS = "dangerous"


class ThermalAction(Enum):
    NONE = "none"
    NOTIFY_CRITICAL = "notify_critical"
    NOTIFY_COOLING = "notify_cooling"
    SHUTDOWN = "shutdown"


class ThermalOutcome(Enum):
    """Why the safety controller stopped."""

    NO_SENSORS = "no_sensors"
    RECOVERY_WRITE_FAILED = "recovery_write_failed"
    UNSAFE_AT_STARTUP = "unsafe_at_startup"
    DANGEROUS = "dangerous"
    CANCELLED = "cancelled"
    FAILED = "failed"


def next_transition(
    state: ThermalState, temperature: float, thresholds: ThermalThresholds
) -> Tuple[ThermalState, ThermalAction]:
    """
    Evaluate one reading against the current state.

    Rules in priority order:
        1. >= dangerous: always shut down, whatever the state
        2. >= critical while not CRITICAL: notify once, enter CRITICAL
        3. CRITICAL and < critical: notify cooling, back to COOL
        4. anything else: stay put
    """
    if temperature >= thresholds.dangerous:
        return ThermalState.DANGEROUS, ThermalAction.SHUTDOWN

    if temperature >= thresholds.critical and state != ThermalState.CRITICAL:
        return ThermalState.CRITICAL, ThermalAction.NOTIFY_CRITICAL

    if state == ThermalState.CRITICAL and temperature < thresholds.critical:
        return ThermalState.COOL, ThermalAction.NOTIFY_COOLING

    return state, ThermalAction.NONE


class ThermalSafetyController:
    """
    Poll CPU temperature and shut the host down when it gets dangerous.

    Before the first poll completes, a recovery check consults the persisted
    ``unsafe_shutdown_pending`` flag: a machine that was shut down for heat is
    not trusted again until a reading at or below the safe threshold clears it.
    """

    def __init__(
        self,
        sensor,
        store: FlagStore,
        notifier: Notifier,
        shutdown_agent: ShutdownAgent,
        token: CancellationToken,
        thresholds: Optional[ThermalThresholds] = None,
        poll_interval: float = 1.0,
    ):
        self.sensor = sensor
        self.store = store
        self.notifier = notifier
        self.shutdown_agent = shutdown_agent
        self.token = token
        self.thresholds = thresholds or ThermalThresholds()
        self.poll_interval = poll_interval
        self.state = ThermalState.COOL

    def run(self) -> ThermalOutcome:
        """Worker entry point. Never raises."""
        logger.info(
            f"Thresholds: safe={self.thresholds.safe}°C, "
            f"critical={self.thresholds.critical}°C, "
            f"dangerous={self.thresholds.dangerous}°C"
        )
        try:
            outcome = self._run()
        except Exception as e:
            logger.exception("CPU temperature monitor crashed")
            self._notify(f"Unexpected error: \"{e}\", terminating thread...", logging.ERROR)
            outcome = ThermalOutcome.FAILED

        if outcome == ThermalOutcome.NO_SENSORS:
            self._notify("No sensors to check, terminating thread...")
        return outcome

    def _run(self) -> ThermalOutcome:
        if self.token.is_cancelled():
            return ThermalOutcome.CANCELLED

        reading = self.sensor.sample()
        if reading is None:
            return ThermalOutcome.NO_SENSORS

        outcome = self._startup_recovery(reading)
        if outcome is not None:
            return outcome

        return self._monitor(reading)

    def _startup_recovery(self, reading: ThermalReading) -> Optional[ThermalOutcome]:
        """Returns a terminal outcome, or None to continue into monitoring."""
        if not self.store.get(UNSAFE_SHUTDOWN_PENDING):
            return None

        if reading.value <= self.thresholds.safe:
            try:
                self.store.set(UNSAFE_SHUTDOWN_PENDING, False)
            except StoreError as e:
                self._notify(
                    f"Couldn't manage the flag store: \"{e}\", terminating thread...",
                    logging.ERROR,
                )
                return ThermalOutcome.RECOVERY_WRITE_FAILED

            logger.info(
                f"Temperature {reading.value}°C is safe again, cleared unsafe shutdown flag"
            )
            return None

        logger.critical(
            f"Previous run shut down for heat and CPU is still at {reading.value}°C "
            f"(safe <= {self.thresholds.safe}°C)"
        )
        if not self._request_shutdown():
            self._notify(
                "The CPU temperature is still not safe and couldn't shutdown, terminating thread...",
                logging.ERROR,
            )
        return ThermalOutcome.UNSAFE_AT_STARTUP

    def _monitor(self, reading: ThermalReading) -> ThermalOutcome:
        while True:
            outcome = self._step(reading)
            if outcome is not None:
                return outcome

            if self.token.wait(self.poll_interval):
                logger.info("Cancellation observed, stopping CPU temperature monitor")
                return ThermalOutcome.CANCELLED

            reading = self.sensor.sample()
            if reading is None:
                return ThermalOutcome.NO_SENSORS

    def _step(self, reading: ThermalReading) -> Optional[ThermalOutcome]:
        temp = reading.value
        self.state, action = next_transition(self.state, temp, self.thresholds)

        if action == ThermalAction.SHUTDOWN:
            self._notify(
                f"Reached dangerous temperature: {temp}°C | Shutting down...",
                logging.CRITICAL,
            )
            try:
                self.store.set(UNSAFE_SHUTDOWN_PENDING, True)
            except StoreError as e:
                self._notify(f"Couldn't manage the flag store: \"{e}\"", logging.ERROR)

            if not self._request_shutdown():
                self._notify("Shutdown failed, terminating thread...", logging.ERROR)
            return ThermalOutcome.DANGEROUS

        if action == ThermalAction.NOTIFY_CRITICAL:
            self._notify(f"Reached critical temperature: {temp}°C", logging.WARNING)
        elif action == ThermalAction.NOTIFY_COOLING:
            self._notify(f"Cooling down: {temp}°C")
        else:
            logger.debug(f"CPU {temp}°C ({reading.source}), state={self.state.value}")
        return None

    def _request_shutdown(self) -> bool:
        return self.shutdown_agent.request_shutdown(
            ShutdownKind.SHUTDOWN, ShutdownReason.THERMAL
        )

    def _notify(self, body: str, level: int = logging.INFO) -> None:
        self.notifier.notify(
            DAEMON_NAME, body, WORKER_NAME, include_timestamp=True, level=level
        )
