"""In-memory table model — the unit of data every analysis stage consumes.

A table is an ordered column list plus a list of row dicts.  Stages never
mutate a table in place; sampling and cleaning derive new instances.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from game_insights.utils.values import to_datetime

logger = logging.getLogger(__name__)

SCHEMA_SAMPLE_SIZE = 10


class InvalidTableError(ValueError):
    """Raised when a table is structurally unusable (empty or ragged)."""


@dataclass
class TableMetadata:
    source: str = "unknown"
    row_count: int = 0
    fetched_at: str | None = None


@dataclass
class Table:
    """Ordered columns plus row mappings."""
    columns: list[str]
    rows: list[dict]
    metadata: TableMetadata = field(default_factory=TableMetadata)

    def __post_init__(self) -> None:
        self.metadata.row_count = len(self.rows)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @classmethod
    def from_records(
        cls,
        records: list[dict],
        columns: list[str] | None = None,
        source: str = "records",
    ) -> Table:
        """Build a table from plain dicts, filling absent keys with None.

        When *columns* is omitted the column order is the order of first
        appearance across all records.
        """
        if columns is None:
            columns = []
            seen: set[str] = set()
            for rec in records:
                for key in rec:
                    if key not in seen:
                        seen.add(key)
                        columns.append(key)
        rows = [{col: rec.get(col) for col in columns} for rec in records]
        return cls(columns=list(columns), rows=rows, metadata=TableMetadata(source=source))

    @classmethod
    def from_dict(cls, payload: dict) -> Table:
        """Build a table from ``{"columns", "rows", "metadata"}`` payloads."""
        meta = payload.get("metadata") or {}
        table = cls(
            columns=list(payload.get("columns") or []),
            rows=list(payload.get("rows") or []),
            metadata=TableMetadata(
                source=meta.get("source", "unknown"),
                fetched_at=meta.get("fetchedAt") or meta.get("fetched_at"),
            ),
        )
        return table

    def derive(self, rows: list[dict], suffix: str) -> Table:
        """New table with the same columns and a tagged source name."""
        return Table(
            columns=list(self.columns),
            rows=rows,
            metadata=TableMetadata(
                source=f"{self.metadata.source} ({suffix})",
                fetched_at=self.metadata.fetched_at,
            ),
        )

    def validate(self) -> None:
        """Raise :class:`InvalidTableError` if the table cannot be analysed."""
        if not self.columns:
            raise InvalidTableError("table has no columns")
        if not self.rows:
            raise InvalidTableError("table has no rows")
        expected = set(self.columns)
        if len(expected) != len(self.columns):
            raise InvalidTableError("table has duplicate column names")
        for idx, row in enumerate(self.rows):
            if not isinstance(row, dict):
                raise InvalidTableError(f"row {idx} is not a mapping")
            if set(row) != expected:
                missing = sorted(expected - set(row))
                extra = sorted(set(row) - expected)
                raise InvalidTableError(
                    f"row {idx} does not match declared columns "
                    f"(missing={missing}, extra={extra})"
                )


@dataclass
class ColumnInfo:
    name: str
    type: str  # string | number | boolean | date | unknown
    nullable: bool = True
    sample_values: list[Any] = field(default_factory=list)


def detect_value_type(value: Any) -> str:
    """Primitive type of one value."""
    if value is None:
        return "unknown"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, (datetime, date)):
        return "date"
    if isinstance(value, str):
        if "-" in value and to_datetime(value) is not None:
            return "date"
        return "string"
    return "unknown"


def build_schema(table: Table) -> list[ColumnInfo]:
    """Describe each column from the first rows of the table."""
    head = table.rows[:SCHEMA_SAMPLE_SIZE]
    schema: list[ColumnInfo] = []
    for col in table.columns:
        samples = [row.get(col) for row in head]
        first = next((v for v in samples if v is not None and v != ""), None)
        schema.append(ColumnInfo(
            name=col,
            type=detect_value_type(first),
            nullable=any(v is None or v == "" for v in samples),
            sample_values=samples,
        ))
    logger.debug("Built schema for %d columns", len(schema))
    return schema
