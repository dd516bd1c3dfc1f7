"""Column definition and structural roles."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, model_validator

from rowbridge.types import TypeCode


class Role(str, Enum):
    """Structural purpose of a column (its delta type)."""

    SURROGATE_KEY = "surrogate_key"
    NATURAL_KEY = "natural_key"
    TRACKING_FIELD = "tracking_field"
    NON_TRACKING_FIELD = "non_tracking_field"
    IGNORE_FIELD = "ignore_field"
    TIMESTAMP = "timestamp"  # Store-managed modification time
    FILE_NAME = "file_name"
    PARTITION_KEY = "partition_key"  # Table-store partition
    ROW_KEY = "row_key"  # Table-store row identity
    VALID_FROM_DATE = "valid_from_date"
    VALID_TO_DATE = "valid_to_date"
    CREATE_DATE = "create_date"
    UPDATE_DATE = "update_date"
    IS_CURRENT_FIELD = "is_current_field"
    AUTO_INCREMENT = "auto_increment"
    REJECTED_REASON = "rejected_reason"


# Roles generated by the engine or store rather than read from a source
GENERATED_ROLES = frozenset(
    {
        Role.SURROGATE_KEY,
        Role.VALID_FROM_DATE,
        Role.VALID_TO_DATE,
        Role.CREATE_DATE,
        Role.UPDATE_DATE,
        Role.IS_CURRENT_FIELD,
        Role.AUTO_INCREMENT,
        Role.REJECTED_REASON,
        Role.TIMESTAMP,
    }
)


def default_type_for_role(role: Role) -> TypeCode:
    """Type a column gets when it is added only because of its role."""
    match role:
        case Role.SURROGATE_KEY | Role.AUTO_INCREMENT:
            return TypeCode.INT64
        case (
            Role.VALID_FROM_DATE
            | Role.VALID_TO_DATE
            | Role.CREATE_DATE
            | Role.UPDATE_DATE
            | Role.TIMESTAMP
        ):
            return TypeCode.DATETIME
        case Role.IS_CURRENT_FIELD:
            return TypeCode.BOOLEAN
        case _:
            return TypeCode.STRING


class Column(BaseModel):
    """A typed column of a ``Table``.

    ``schema_name`` is the owning table or schema; it forms the qualified
    name ``schema.name`` used by ``ColumnSet`` lookups.
    """

    name: str
    logical_name: str | None = None
    type_code: TypeCode = TypeCode.STRING
    max_length: int | None = None
    scale: int | None = None
    precision: int | None = None
    nullable: bool = True
    unique: bool = False
    role: Role = Role.TRACKING_FIELD
    description: str | None = None
    schema_name: str | None = None
    default_value: Any = None

    @model_validator(mode="after")
    def _default_logical_name(self) -> Column:
        if self.logical_name is None:
            self.logical_name = self.name
        return self

    @property
    def qualified_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.name}"
        return self.name

    @property
    def is_generated(self) -> bool:
        return self.role in GENERATED_ROLES

    @property
    def is_ignored(self) -> bool:
        return self.role == Role.IGNORE_FIELD

    def copy_column(self, **changes: Any) -> Column:
        """Copy with optional field overrides."""
        return self.model_copy(update=changes, deep=True)

    @classmethod
    def for_role(cls, name: str, role: Role, **kwargs: Any) -> Column:
        """Create a column typed by its role."""
        kwargs.setdefault("type_code", default_type_for_role(role))
        return cls(name=name, role=role, **kwargs)

    def __str__(self) -> str:
        return self.qualified_name
