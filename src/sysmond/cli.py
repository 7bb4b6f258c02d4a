"""Command-line entry point for the sysmond daemon."""

import argparse
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from dotenv import load_dotenv

from .config import DEFAULTS, ConfigError, load_config
from .hardware import HardwareError, build_sensor
from .instance import InstanceLock
from .lifecycle import DAEMON_NAME, CancellationToken, Worker, WorkerOrchestrator, exit_grace_delay
from .notify import Notifier, build_notifier
from .power import PowerSourceMonitor, PowerSupplyWatcher
from .safety import ThermalSafetyController, ThermalThresholds
from .shutdown import ShutdownAgent
from .store import TELEMETRY_FILE_LOCATION, FlagStore, StoreError
from .telemetry import JournalReader, TelemetryCollector

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class ArgumentError(Exception):
    """Raised instead of exiting when the command line can't be parsed."""

    pass


class DaemonArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports errors to the caller instead of exiting."""

    def error(self, message):
        raise ArgumentError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = DaemonArgumentParser(
        prog=DAEMON_NAME,
        allow_abbrev=False,
        description="CPU temperature safety and power source monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example usage:
  # Run in the foreground with log output on the terminal
  sudo sysmond --console

  # Also record kernel journal entries to the telemetry file
  sudo sysmond --config /etc/sysmond/config.yaml --enable-telemetry
        """,
    )
    parser.add_argument(
        "--console",
        action="store_true",
        help="Stream log output to the console",
    )
    parser.add_argument(
        "--enable-telemetry",
        action="store_true",
        help="Append selected system journal entries to the telemetry file",
    )
    parser.add_argument(
        "--config",
        help="Path to configuration YAML file (default: /etc/sysmond/config.yaml)",
    )
    return parser


def setup_logging(log_cfg: Dict[str, Any], console: bool) -> None:
    """Configure root logging for the daemon."""
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_cfg.get("file"):
        log_file = Path(log_cfg["file"])
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    if not handlers:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def build_workers(
    cfg: Dict[str, Any],
    args: argparse.Namespace,
    store: FlagStore,
    notifier: Notifier,
    token: CancellationToken,
    started_at: Optional[datetime],
) -> List[Tuple[str, Worker]]:
    """Create the enabled workers in start order."""
    workers: List[Tuple[str, Worker]] = []

    if args.enable_telemetry:
        telemetry_cfg = cfg["telemetry"]
        collector = TelemetryCollector(
            path=Path(store.get(TELEMETRY_FILE_LOCATION)),
            reader=JournalReader(identifier=telemetry_cfg["identifier"]),
            notifier=notifier,
            token=token,
            poll_interval=telemetry_cfg["poll_interval"],
            started_at=started_at,
        )
        workers.append(("telemetry", collector.run))

    thermal_cfg = cfg["thermal"]
    if thermal_cfg.get("enabled", True):
        try:
            sensor = build_sensor(thermal_cfg)
        except HardwareError as e:
            notifier.notify(
                DAEMON_NAME,
                f"CPU temperature monitor disabled: {e}",
                include_timestamp=True,
                level=logging.ERROR,
            )
        else:
            shutdown_cfg = cfg["shutdown"]
            controller = ThermalSafetyController(
                sensor=sensor,
                store=store,
                notifier=notifier,
                shutdown_agent=ShutdownAgent(
                    use_sudo=shutdown_cfg.get("use_sudo", True),
                    dry_run=shutdown_cfg.get("dry_run", False),
                ),
                token=token,
                thresholds=ThermalThresholds.from_store(store),
                poll_interval=thermal_cfg["poll_interval"],
            )
            workers.append(("cpu_temp_safety", controller.run))

    power_cfg = cfg["power"]
    if power_cfg.get("enabled", True):
        monitor = PowerSourceMonitor(
            source=PowerSupplyWatcher(
                supply_root=power_cfg["supply_root"],
                poll_interval=power_cfg["poll_interval"],
            ),
            notifier=notifier,
            token=token,
        )
        workers.append(("power_supply_switch_alerter", monitor.run))

    return workers


def run(argv: Optional[List[str]] = None, sleep: Callable[[float], None] = time.sleep) -> int:
    """
    Run the daemon until every worker finishes.

    Returns:
        Process exit code, always 0
    """
    try:
        return _run(argv, sleep)
    except KeyboardInterrupt:
        # Interrupted before the orchestrator took over SIGINT
        print("Interrupted, exiting.")
        return 0


def _run(argv: Optional[List[str]], sleep: Callable[[float], None]) -> int:
    started_at = datetime.now()
    load_dotenv()

    try:
        args, unknown = build_parser().parse_known_args(argv)
    except ArgumentError as e:
        print(f"Invalid option argument: {e}")
        exit_grace_delay(DEFAULTS["lifecycle"]["exit_grace"], sleep)
        return 0

    if unknown:
        plural = "s" if len(unknown) > 1 else ""
        print(f"Unknown option argument{plural}: {', '.join(unknown)}")
        exit_grace_delay(DEFAULTS["lifecycle"]["exit_grace"], sleep)
        return 0

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"✗ {e}")
        exit_grace_delay(DEFAULTS["lifecycle"]["exit_grace"], sleep)
        return 0

    setup_logging(cfg["logging"], args.console)
    exit_grace = cfg["lifecycle"]["exit_grace"]
    notifier = build_notifier(cfg["notifications"])

    lock = InstanceLock(Path(cfg["instance"]["lock_file"]))
    try:
        acquired = lock.acquire()
    except OSError as e:
        notifier.notify(
            DAEMON_NAME,
            f"Couldn't open the instance lock: \"{e}\"",
            include_timestamp=True,
            level=logging.ERROR,
        )
        exit_grace_delay(exit_grace, sleep)
        return 0

    if not acquired:
        message = f"Another instance of {DAEMON_NAME} is already in execution."
        parent = lock.holder().get("parent")
        if parent:
            message += f"\nSpawned by: \"{parent}\""
        notifier.notify(DAEMON_NAME, message, include_timestamp=True, level=logging.WARNING)
        exit_grace_delay(exit_grace, sleep)
        return 0

    try:
        store = FlagStore(Path(cfg["store"]["path"]))
        try:
            store.load()
        except StoreError as e:
            notifier.notify(
                DAEMON_NAME,
                f"Couldn't manage the flag store: \"{e}\", exiting.",
                level=logging.ERROR,
            )
            lock.release()
            exit_grace_delay(exit_grace, sleep)
            return 0

        token = CancellationToken()
        workers = build_workers(cfg, args, store, notifier, token, started_at)
        if not workers:
            notifier.notify(DAEMON_NAME, "No workers enabled, exiting.", include_timestamp=True)
            lock.release()
            exit_grace_delay(exit_grace, sleep)
            return 0

        orchestrator = WorkerOrchestrator(
            workers,
            token,
            notifier,
            owns_instance_lock=lock.held,
            exit_grace=exit_grace,
            sleep=sleep,
        )
        orchestrator.install_signal_handlers()
        return orchestrator.run()
    finally:
        lock.release()


def main() -> None:
    """Main entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
