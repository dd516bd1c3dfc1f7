"""Row and schema model."""

from rowbridge.schema.column import Column, Role, default_type_for_role
from rowbridge.schema.column_set import ColumnSet
from rowbridge.schema.table import Row, Table, escape_csv_field, format_csv_row

__all__ = [
    "Column",
    "ColumnSet",
    "Role",
    "Row",
    "Table",
    "default_type_for_role",
    "escape_csv_field",
    "format_csv_row",
]
