"""
Reconciliation Run for the Telemetry Pipeline

Wires one batch reconciliation: a source and a destination store each read
by its own producer thread, the differ consuming both channels, and an
optional corrective writer with its own connection to the target store.
"""

import logging
import signal
import threading
from typing import Callable, Optional

from src.monitoring.metrics import ReconciliationMetrics
from src.reconciliation.differ import ComparatorConfig, ReconciliationDiffer, ReconciliationSummary
from src.reconciliation.producer import RecordChannel, StreamProducer
from src.reconciliation.records import TimeField
from src.reconciliation.repairer import BackfillPolicy, CorrectiveWriter
from src.reconciliation.reporter import DivergenceReporter
from src.reconciliation.source import OrderedRecordSource
from src.storage.postgres import PostgresStore
from src.utils.config import AppConfig
from src.utils.correlation import CorrelationContext
from src.utils.errors import BackfillWriteError, ConfigurationError
from src.utils.vault_client import resolve_password

logger = logging.getLogger(__name__)

PRODUCER_JOIN_TIMEOUT = 5.0


def parse_time_field(value: str) -> TimeField:
    try:
        return TimeField(str(value).strip().lower())
    except ValueError:
        valid = [f.value for f in TimeField]
        raise ConfigurationError(f"Invalid time field: {value}. Must be one of {valid}")


def build_comparator_config(config: AppConfig) -> ComparatorConfig:
    """
    Translate the reconciliation settings into a ComparatorConfig.

    Raises:
        ConfigurationError: If a setting is invalid
    """
    rc = config.reconciliation
    try:
        return ComparatorConfig(
            time_field=parse_time_field(rc.time_field),
            tolerance=rc.tolerance,
            repeat_budget=rc.repeat_budget,
            backfill_on_drain=rc.backfill_on_drain
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid reconciliation settings: {e}") from e


def _install_stop_handlers(stop: Callable[[], None]):
    """Route SIGINT/SIGTERM to ``stop``; returns the previous handlers."""
    if threading.current_thread() is not threading.main_thread():
        return {}

    def handler(signum, frame):
        logger.warning(f"Signal {signum} received, stopping reconciliation")
        stop()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def _restore_handlers(previous) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


def _shutdown_producers(channels, producers, timeout: float = PRODUCER_JOIN_TIMEOUT) -> None:
    """Close the channels so blocked producers give up, then wait for them."""
    for channel in channels:
        if not channel.closed:
            logger.debug(f"Closing unfinished channel {channel.name}")
            channel.close()
    for producer in producers:
        if not producer.is_alive():
            continue
        producer.join(timeout)
        if producer.is_alive():
            logger.warning(f"{producer.name} still reading after {timeout}s, closing its store anyway")


def run_reconciliation(
    config: AppConfig,
    store_factory: Callable[..., PostgresStore] = PostgresStore,
    reporter: Optional[DivergenceReporter] = None,
    metrics: Optional[ReconciliationMetrics] = None,
    handle_signals: bool = True
) -> ReconciliationSummary:
    """
    Reconcile the configured table between the primary and destination store.

    Args:
        config: Application configuration
        store_factory: Creates store handles (url, password=..., name=...)
        reporter: Divergence reporter (defaults from config)
        metrics: Metrics to record the run into
        handle_signals: Stop cleanly on SIGINT/SIGTERM

    Returns:
        Summary of the run

    Raises:
        ConfigurationError: Before any store is opened, if settings are missing
        StoreConnectionError, StoreQueryError, ProtocolViolationError,
        BackfillWriteError: On fatal run errors
    """
    config.require_destination()
    comparator_config = build_comparator_config(config)
    policy = BackfillPolicy.parse(config.reconciliation.backfill_policy)
    rc = config.reconciliation
    table = config.database.store_tablename

    store_password = resolve_password("store", config.database.password)
    dest_password = resolve_password("destination", config.destination.password)

    def open_store(name: str):
        if name == "destination":
            store = store_factory(config.destination.url, password=dest_password,
                                  user=config.database.user, name=name)
        else:
            store = store_factory(config.database.url, password=store_password,
                                  user=config.database.user, name=name)
        return store.connect()

    with CorrelationContext() as run_id:
        logger.info(f"Synchronize of {table} data (run {run_id})")
        logger.info(
            f"Time field {comparator_config.time_field.value}, "
            f"tolerance {comparator_config.tolerance}, backfill policy {policy.value}"
        )

        stores = []
        channels = []
        producers = []
        try:
            source_store = open_store("source")
            stores.append(source_store)
            dest_store = open_store("destination")
            stores.append(dest_store)

            writer = None
            if policy is not BackfillPolicy.NONE:
                # The side lacking the record receives it
                target_name = "destination" if policy is BackfillPolicy.REPLAY_SOURCE else "target"
                target_store = open_store(target_name)
                stores.append(target_store)
                writer = CorrectiveWriter(
                    target_store, table, rc.key_fields, policy=policy, dry_run=rc.dry_run
                )

            raw_query = rc.raw_query.replace("{table}", table) if rc.raw_query else None
            source_channel = RecordChannel(maxsize=rc.channel_size, name="source")
            dest_channel = RecordChannel(maxsize=rc.channel_size, name="destination")
            channels = [source_channel, dest_channel]
            producers = [
                StreamProducer(
                    OrderedRecordSource(store, table, comparator_config.time_field,
                                        raw_query=raw_query, validate_order=rc.validate_order,
                                        name=channel.name),
                    channel
                )
                for store, channel in ((source_store, source_channel), (dest_store, dest_channel))
            ]

            differ = ReconciliationDiffer(
                source_channel, dest_channel, comparator_config, writer=writer,
                reporter=reporter or DivergenceReporter(comparator_config.repeat_budget)
            )

            previous = _install_stop_handlers(differ.stop) if handle_signals else {}
            try:
                for producer in producers:
                    producer.start()
                summary = differ.run()
            finally:
                _restore_handlers(previous)

        except BackfillWriteError:
            if metrics is not None:
                metrics.record_failure(table, backfill_failed=True)
            raise
        except Exception:
            if metrics is not None:
                metrics.record_failure(table)
            raise
        finally:
            _shutdown_producers(channels, producers)
            for store in stores:
                store.close()

        if metrics is not None:
            metrics.record_run(table, summary)
        return summary
