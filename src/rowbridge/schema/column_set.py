"""Ordered column collection with name indexes."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from rowbridge.schema.column import Column, Role


class ColumnSet:
    """Ordered list of columns, indexed by qualified name and by plain name.

    Lookups are O(1). Appends update the indexes in place; any other
    structural change rebuilds them. When two columns share a name the
    first one wins for lookups, while both keep their positions so rows
    stay aligned.
    """

    def __init__(self, columns: Iterable[Column] | None = None):
        self._columns: list[Column] = []
        self._qualified: dict[str, int] = {}
        self._plain: dict[str, int] = {}
        for column in columns or []:
            self.append(column)

    def _index(self, column: Column, ordinal: int) -> None:
        self._qualified.setdefault(column.qualified_name, ordinal)
        self._plain.setdefault(column.name, ordinal)

    def _rebuild(self) -> None:
        self._qualified.clear()
        self._plain.clear()
        for ordinal, column in enumerate(self._columns):
            self._index(column, ordinal)

    def append(self, column: Column) -> None:
        self._columns.append(column)
        self._index(column, len(self._columns) - 1)

    def extend(self, columns: Iterable[Column]) -> None:
        for column in columns:
            self.append(column)

    def insert(self, ordinal: int, column: Column) -> None:
        self._columns.insert(ordinal, column)
        self._rebuild()

    def remove(self, column: Column | str) -> None:
        ordinal = self.ordinal(column)
        if ordinal < 0:
            raise KeyError(f"Column not found: {column}")
        self.pop(ordinal)

    def pop(self, ordinal: int = -1) -> Column:
        column = self._columns.pop(ordinal)
        self._rebuild()
        return column

    def clear(self) -> None:
        self._columns.clear()
        self._rebuild()

    def ordinal(self, column: Column | str) -> int:
        """Position of a column, or -1 when absent.

        Strings are tried as qualified names first, then as plain names.
        """
        if isinstance(column, Column):
            ordinal = self._qualified.get(column.qualified_name)
            if ordinal is None:
                ordinal = self._plain.get(column.name)
        else:
            ordinal = self._qualified.get(column)
            if ordinal is None:
                ordinal = self._plain.get(column)
        return -1 if ordinal is None else ordinal

    def get(self, column: Column | str) -> Column | None:
        ordinal = self.ordinal(column)
        return None if ordinal < 0 else self._columns[ordinal]

    def by_role(self, role: Role) -> Column | None:
        """First column holding ``role``."""
        return next((c for c in self._columns if c.role == role), None)

    def all_by_role(self, *roles: Role) -> list[Column]:
        return [c for c in self._columns if c.role in roles]

    def ordinal_of_role(self, role: Role) -> int:
        for ordinal, column in enumerate(self._columns):
            if column.role == role:
                return ordinal
        return -1

    def names(self) -> list[str]:
        return [c.name for c in self._columns]

    def __getitem__(self, key: int | str | Column) -> Column:
        if isinstance(key, int):
            return self._columns[key]
        column = self.get(key)
        if column is None:
            raise KeyError(f"Column not found: {key}")
        return column

    def __contains__(self, key: object) -> bool:
        if isinstance(key, Column | str):
            return self.ordinal(key) >= 0
        return False

    def __iter__(self) -> Iterator[Column]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __repr__(self) -> str:
        return f"ColumnSet({self.names()!r})"
