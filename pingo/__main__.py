"""Entry point for pingo."""

import argparse
import logging
import os
import signal
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from pingo.collector_ping import PingCollector, validate_target
from pingo.config import apply_overrides, default_config_path, load_config
from pingo.database import StatsStore
from pingo.errors import ConfigError, InvalidTargetError, StorageError
from pingo.fake_collector import FakeCollector
from pingo.logging_config import configure_logging
from pingo.scheduler import MonitorLoop
from pingo.server import create_app, start_server_thread

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="pingo",
        description="Continuously ping a target, record latency and packet loss, and chart it.",
    )
    parser.add_argument("--config", default=default_config_path(), help="Path to config file")
    parser.add_argument("--port", default="", help="Web server port (overrides config)")
    parser.add_argument(
        "--retention",
        type=int,
        default=0,
        help="Number of days to retain ping data (overrides config)",
    )
    parser.add_argument("--pings", type=int, default=0, help="Number of pings per round (overrides config)")
    parser.add_argument("--target", default="", help="Target host to ping (overrides config)")
    parser.add_argument("--db", default="", help="Path to SQLite database file (overrides config)")
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for pingo."""
    configure_logging()
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("Failed to load config: %s", e)
        sys.exit(1)

    config = apply_overrides(
        config,
        port=args.port,
        retention_days=args.retention,
        ping_count=args.pings,
        target=args.target,
        db_path=args.db,
    )

    try:
        port = int(config.port)
    except ValueError:
        logger.error("Invalid port: %s", config.port)
        sys.exit(1)

    try:
        validate_target(config.target)
    except InvalidTargetError as e:
        logger.error("Invalid target %r: %s", config.target, e)
        sys.exit(1)

    store = StatsStore(config.db_path)
    try:
        store.initialize()
    except StorageError as e:
        logger.error("Failed to initialize database: %s", e)
        sys.exit(1)

    logger.info(
        "Configuration: target=%s, pings=%d, retention=%d days, port=%d, db=%s",
        config.target,
        config.ping_count,
        config.retention_days,
        port,
        config.db_path,
    )

    if os.environ.get("PINGO_COLLECTOR", "").lower() == "fake":
        collector = FakeCollector()
        logger.info("Using FakeCollector (PINGO_COLLECTOR=fake)")
    else:
        collector = PingCollector()

    app = QCoreApplication(sys.argv[:1])

    monitor = MonitorLoop(
        collector,
        store,
        target=config.target,
        ping_count=config.ping_count,
        retention_days=config.retention_days,
    )
    monitor.start()

    server, _ = start_server_thread(create_app(store), port)

    # Qt only runs Python signal handlers when control returns to the
    # interpreter; a periodic no-op timer makes sure it does
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    signal.signal(signal.SIGTERM, lambda *_: app.quit())
    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(500)

    exit_code = app.exec()

    monitor.stop()
    server.should_exit = True
    logger.info("Shutting down")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
