"""
Tank Sensor Liveness Monitor
Entry point: loads configuration, runs the monitor until SIGINT/SIGTERM
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from tankwatch.config.monitor_config import MonitorConfig, MonitorConfigLoader, StorageConfig
from tankwatch.core.error_handling import ConfigurationError
from tankwatch.core.logging_config import setup_logging
from tankwatch.services.monitor.liveness_monitor import LivenessMonitor
from tankwatch.services.storage.sqlite_store import SqliteStateStore
from tankwatch.services.storage.state_store import JsonFileStateStore, StateStore

logger = logging.getLogger(__name__)


def build_state_store(storage: StorageConfig) -> StateStore:
    """Create the configured snapshot backend"""
    if storage.backend == "sqlite":
        return SqliteStateStore(storage.sqlite_path)
    if storage.backend == "json":
        return JsonFileStateStore(storage.data_dir)
    raise ConfigurationError(f"Unknown storage backend '{storage.backend}'")


async def run(config: MonitorConfig) -> None:
    """
    Run the monitor until a shutdown signal arrives.

    The monitor is always stopped, so snapshots are flushed before the
    broker connection closes.
    """
    store = build_state_store(config.storage)
    monitor = LivenessMonitor(config, store)

    stop_event = asyncio.Event()
    received = {'signal': 'shutdown'}

    def _on_signal(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down...")
        received['signal'] = sig.name
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(_on_signal, signal.Signals(s)))

    try:
        await monitor.start()
        await stop_event.wait()
    finally:
        await monitor.stop(received['signal'])
        store.close()


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Monitor water tank sensor connectivity over MQTT",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Credentials are read from the environment or a .env file:
  YOLINK_UAC_ID, YOLINK_UAC_SECRET, YOLINK_HOME_ID

Examples:
  tankwatch
  tankwatch --config /etc/tankwatch/monitor.yaml --log-level DEBUG
        """
    )
    parser.add_argument(
        '--config',
        default=None,
        help='Path to monitor.yaml (default: $TANKWATCH_CONFIG or tankwatch/config/monitor.yaml)'
    )
    parser.add_argument(
        '--env-file',
        default='.env',
        help='dotenv file with credentials (default: .env)'
    )
    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Override the configured log level'
    )
    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    """
    Console entry point.

    Returns:
        Process exit code (1 on configuration errors)
    """
    args = parse_arguments(argv)

    try:
        config = MonitorConfigLoader.load(args.config, env_file=args.env_file)
        if args.log_level:
            config.logging.level = args.log_level
        config.validate()
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e.message}", file=sys.stderr)
        return 1

    setup_logging(
        log_level=config.logging.level,
        log_file=config.logging.file,
        json_format=config.logging.json_format,
        console_output=config.logging.console_output,
    )

    try:
        asyncio.run(run(config))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
