#!/usr/bin/env python3
"""Event Log Exporter: entry point."""

import logging
import signal
import sys
import threading

from eventlog_exporter.config import load_config
from eventlog_exporter.encoder import ParquetEncoder
from eventlog_exporter.errors import ConfigError
from eventlog_exporter.exporter import ChannelExporter
from eventlog_exporter.metrics import ExportMetrics
from eventlog_exporter.scheduler import Scheduler
from eventlog_exporter.sources import create_source

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    try:
        config = load_config(argv)
    except ConfigError as e:
        logging.basicConfig(stream=sys.stderr)
        logger.error("Invalid configuration: %s", e)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s [eventlog-exporter] %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    logger.info(
        "Config: channels=%s, output_dir=%s, interval=%.1fs, max_records=%d, source=%s, "
        "write_mode=%s, compression=%s",
        ",".join(config.channels), config.output_dir, config.interval, config.max_records,
        config.source, config.write_mode, config.compression,
    )

    shutdown_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    exporter = ChannelExporter(
        create_source(config),
        ParquetEncoder(config.compression),
        max_records=config.max_records,
        write_mode=config.write_mode,
        metrics=ExportMetrics(),
    )
    scheduler = Scheduler(exporter, config.channel_specs, config.interval, shutdown_event)

    if config.run_once:
        results = scheduler.run_cycle()
        return 0 if all(r.ok for r in results) else 1

    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
