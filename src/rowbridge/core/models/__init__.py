"""Core models: only the truly shared base types.

Domain models live in their respective packages:
- types/        -> canonical type codes, conversion, comparison
- schema/       -> Column, ColumnSet, Table
- query/        -> query intermediate representation
"""

from rowbridge.core.models.base import ErrorKind, Result

__all__ = [
    "ErrorKind",
    "Result",
]
