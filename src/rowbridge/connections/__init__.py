"""Connectors: one contract, three families of store."""

from rowbridge.connections.base import (
    Connector,
    ConnectorCategory,
    ConnectorState,
    connector_operation,
    is_cancelled,
)
from rowbridge.connections.reader import BulkSource, RowReader, TableReader, sort_rows

__all__ = [
    "BulkSource",
    "Connector",
    "ConnectorCategory",
    "ConnectorState",
    "RowReader",
    "TableReader",
    "connector_operation",
    "is_cancelled",
    "sort_rows",
]
