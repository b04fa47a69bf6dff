#!/usr/bin/env python3
"""
Telemetry to Database Tool

Ingests telemetry from the message bus into the store table, or, with
--sync, reconciles the store table against a destination store and
backfills gaps.

Usage:
    ./scripts/telemetry2db.py --config config/telemetry2db.yaml
    ./scripts/telemetry2db.py --config config/telemetry2db.yaml --create
    TELEMETRY_DEST_URL=postgresql://backup/db ./scripts/telemetry2db.py --sync
    ./scripts/telemetry2db.py --sync --dry-run --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.ingestion import PayloadMapper, TelemetryIngestor
from src.monitoring import IngestionMetrics, ReconciliationMetrics, start_metrics_server
from src.reconciliation import run_reconciliation
from src.storage import PostgresStore
from src.utils.config import load_config
from src.utils.errors import Telemetry2DBError
from src.utils.logging_setup import configure_logging
from src.utils.vault_client import resolve_password

__version__ = "1.0.0"

logger = logging.getLogger("src.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Telemetry ingestion and time-series reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--config", "-c", help="YAML configuration file")
    parser.add_argument("--sync", action="store_true",
                        help="Reconcile the store table against the destination store")

    # Ingestion options
    parser.add_argument("--server", help="Message bus bootstrap servers, e.g. 127.0.0.1:9092")
    parser.add_argument("--topic", help="Topic to subscribe to ('#' for all)")
    parser.add_argument("--clientid", help="A client id for the connection")
    parser.add_argument("--username", help="A username to authenticate to the message bus")
    parser.add_argument("--password", help="Password to match username")
    parser.add_argument("--maxtries", type=int, help="Connection attempts before giving up")
    parser.add_argument("--create", action="store_true", help="Create the store table if missing")

    # Reconciliation options
    parser.add_argument("--dry-run", action="store_true", help="Report backfills without writing")
    parser.add_argument("--json", action="store_true", help="Print the run summary as JSON")

    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_arguments(config, args) -> None:
    """Command line flags take precedence over file and environment."""
    bus = config.bus
    bus.server = args.server or bus.server
    bus.topic = args.topic or bus.topic
    bus.client_id = args.clientid or bus.client_id
    bus.username = args.username or bus.username
    bus.password = args.password or bus.password
    if args.maxtries is not None:
        bus.max_tries = args.maxtries
    if args.dry_run:
        config.reconciliation.dry_run = True


def run_sync(config, args) -> int:
    metrics = ReconciliationMetrics()
    if args.metrics_port:
        start_metrics_server(args.metrics_port, metrics.registry)

    summary = run_reconciliation(config, metrics=metrics)
    if args.json:
        print(json.dumps(summary.as_dict(), indent=2))
    return 0


def run_ingest(config, args) -> int:
    config.require_bus()
    mapper = PayloadMapper(config.mapping)
    metrics = IngestionMetrics()
    if args.metrics_port:
        start_metrics_server(args.metrics_port, metrics.registry)

    store = PostgresStore(
        config.database.url,
        password=resolve_password("store", config.database.password),
        user=config.database.user,
        name="store"
    )
    table = config.database.store_tablename
    logger.info(f"Storing telemetry data to table '{table}'")
    store.connect_with_retry(config.bus.max_tries)
    try:
        if args.create:
            store.create_table_if_not_exists(table)
        if not store.ping():
            logger.error("Database pinging failed")
            return 1
        logger.info("Database initiated")

        config.bus.password = resolve_password("bus", config.bus.password)
        ingestor = TelemetryIngestor(config.bus, store, table, mapper, metrics=metrics)
        ingestor.run()
    finally:
        store.close()
    return 0


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)
    logger.info(f"telemetry2db version {__version__}")

    try:
        config = load_config(args.config)
        apply_arguments(config, args)
        if args.sync:
            return run_sync(config, args)
        return run_ingest(config, args)

    except Telemetry2DBError as e:
        logger.error(f"{type(e).__name__}: {e}", exc_info=args.verbose)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
