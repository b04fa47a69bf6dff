"""
Telemetry Ingestion from the Message Bus

Consumes raw JSON telemetry from Kafka, maps every payload into the fixed
record shape and upserts it into the store table.
"""

import json
import logging
import signal
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence

from kafka import KafkaConsumer
from kafka.errors import KafkaError, NoBrokersAvailable

from src.ingestion.mapping import PayloadMapper
from src.monitoring.metrics import IngestionMetrics
from src.utils.correlation import CorrelationContext, correlation_id_from_headers
from src.utils.errors import BusConnectionError, MappingError

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 350
# Liveness timeout for broker requests
PACKET_TIMEOUT_MS = 2 * 60 * 1000


def consumer_settings(bus_config) -> Dict[str, Any]:
    """Translate the bus configuration into KafkaConsumer keyword arguments."""
    settings: Dict[str, Any] = {
        "bootstrap_servers": [s.strip() for s in bus_config.server.split(",")],
        "group_id": bus_config.group_id,
        "auto_offset_reset": "earliest",
        "request_timeout_ms": PACKET_TIMEOUT_MS + 5000,
        "session_timeout_ms": 30000,
    }
    if bus_config.client_id:
        settings["client_id"] = bus_config.client_id
    if bus_config.username:
        settings.update({
            "security_protocol": "SASL_PLAINTEXT",
            "sasl_mechanism": "PLAIN",
            "sasl_plain_username": bus_config.username,
            "sasl_plain_password": bus_config.password or "",
        })
    return settings


def subscribe(consumer: KafkaConsumer, topic: str) -> None:
    """Subscribe to '#' (all topics), a '^regex', or a comma separated list."""
    if topic == "#":
        consumer.subscribe(pattern=".*")
    elif topic.startswith("^"):
        consumer.subscribe(pattern=topic)
    else:
        consumer.subscribe(topics=[t.strip() for t in topic.split(",") if t.strip()])


class TelemetryIngestor:
    """
    Ingestion loop: bus → mapping → store.

    Undecodable or unmappable messages are logged and skipped; a failed
    store insert is fatal.
    """

    def __init__(
        self,
        bus_config,
        store,
        table: str,
        mapper: Optional[PayloadMapper] = None,
        key_fields: Sequence[str] = ("time",),
        metrics: Optional[IngestionMetrics] = None,
        consumer_factory: Callable[..., KafkaConsumer] = KafkaConsumer,
        retry_wait_seconds: float = 10.0,
        poll_timeout_ms: int = 1000
    ):
        self.bus_config = bus_config
        self.store = store
        self.table = table
        self.mapper = mapper or PayloadMapper()
        self.key_fields = list(key_fields)
        self.metrics = metrics
        self.consumer_factory = consumer_factory
        self.retry_wait_seconds = retry_wait_seconds
        self.poll_timeout_ms = poll_timeout_ms
        self.consumer: Optional[KafkaConsumer] = None
        self.received = 0
        self.stored = 0
        self._stop = threading.Event()

    def connect(self) -> KafkaConsumer:
        """
        Connect and subscribe, retrying up to ``bus_config.max_tries`` times.

        Raises:
            BusConnectionError: If no broker could be reached
        """
        tries = max(1, self.bus_config.max_tries)
        settings = consumer_settings(self.bus_config)
        logger.info(f"Connect to message bus {self.bus_config.server}")
        for count in range(1, tries + 1):
            try:
                self.consumer = self.consumer_factory(**settings)
                break
            except (NoBrokersAvailable, KafkaError) as e:
                if count >= tries:
                    raise BusConnectionError(
                        f"Failed to connect to {self.bus_config.server}: {e}"
                    ) from e
                logger.warning(f"Error connecting message bus, retrying soon ... {e}")
                time.sleep(self.retry_wait_seconds)

        subscribe(self.consumer, self.bus_config.topic)
        logger.info(f"Subscribed to {self.bus_config.topic}")
        return self.consumer

    def stop(self) -> None:
        self._stop.set()

    def run(self, handle_signals: bool = True) -> int:
        """
        Consume until stopped.

        Returns:
            Number of records stored
        """
        if self.consumer is None:
            self.connect()

        previous = {}
        if handle_signals and threading.current_thread() is threading.main_thread():
            def handler(signum, frame):
                logger.warning("Signal received, exiting")
                self.stop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                previous[sig] = signal.signal(sig, handler)

        try:
            while not self._stop.is_set():
                batches = self.consumer.poll(timeout_ms=self.poll_timeout_ms)
                for messages in batches.values():
                    for message in messages:
                        self.handle(message)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            self.close()

        logger.info(f"Ingestion stopped: {self.received} received, {self.stored} stored")
        return self.stored

    def handle(self, message) -> bool:
        """
        Process one bus message.

        Returns:
            True if a record was stored
        """
        with CorrelationContext(correlation_id_from_headers(getattr(message, "headers", None))):
            logger.debug(f"{message.topic}: Message: {message.value!r}")
            self.received += 1
            try:
                payload = json.loads(message.value)
            except (TypeError, ValueError) as e:
                logger.warning(f"JSON unmarshal fails on {message.topic}: {e}")
                self._count(message.topic, "invalid")
                return False
            if not isinstance(payload, dict):
                logger.warning(f"Ignoring non-object payload on {message.topic}")
                self._count(message.topic, "invalid")
                return False

            try:
                record = self.mapper.map(payload)
            except MappingError as e:
                logger.warning(f"Skipping message on {message.topic}: {e}")
                self._count(message.topic, "skipped")
                return False

            self.store.insert_or_update(self.table, self.key_fields, record)
            self.stored += 1
            self._count(message.topic, "stored")
            if self.stored % PROGRESS_INTERVAL == 0:
                logger.info(f"Received telemetry msgs: {self.stored:04d} -> {datetime.now()}")
            return True

    def _count(self, topic: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_message(topic, status)

    def close(self) -> None:
        """Leave the consumer group and close the connection."""
        if self.consumer is not None:
            self.consumer.close()
            self.consumer = None
            logger.info("Message bus disconnected")
