"""Table-store connector built on azure-data-tables."""

from rowbridge.connections.tablestore.batching import BatchOutcome, BatchWriter
from rowbridge.connections.tablestore.connector import TableStoreConfig, TableStoreConnector
from rowbridge.connections.tablestore.entities import from_entity, resolve_keys, to_entity
from rowbridge.connections.tablestore.filters import (
    build_filter_string,
    generate_filter_condition,
)
from rowbridge.connections.tablestore.reader import TableStoreReader

__all__ = [
    "BatchOutcome",
    "BatchWriter",
    "TableStoreConfig",
    "TableStoreConnector",
    "TableStoreReader",
    "build_filter_string",
    "from_entity",
    "generate_filter_condition",
    "resolve_keys",
    "to_entity",
]
