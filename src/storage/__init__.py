"""
Storage Module for the Telemetry Pipeline

PostgreSQL driver used by ingestion (inserts, table creation) and by
reconciliation (ordered reads, raw queries, corrective upserts).
"""

from src.storage.postgres import PostgresStore

__all__ = [
    "PostgresStore",
]
