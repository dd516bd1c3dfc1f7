"""Flat-file connector: CSV files in incoming/processed/rejected directories."""

from rowbridge.connections.flatfile.connector import (
    FileProperties,
    FileType,
    FlatFileConfig,
    FlatFileConnector,
    read_csv_file,
)
from rowbridge.connections.flatfile.reader import FlatFileReader

__all__ = [
    "FileProperties",
    "FileType",
    "FlatFileConfig",
    "FlatFileConnector",
    "FlatFileReader",
    "read_csv_file",
]
