"""
QueryLens - Schema Model
========================

In-memory description of the tables, columns, types and keys declared by an
uploaded DDL script. Built once by schema_parser.parse_schema(), read-only
afterwards; a re-upload replaces the whole model.

Two parallel forms are kept:
- tables:        {lower table name: {lower column name: canonical type}}
                 used for case-insensitive validation lookups
- table_details: per-table column details (nullability, key flags) in
                 declaration order, used for display
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnSchema:
    """
    One declared column.

    Attributes:
        name: Column name as declared
        data_type: Canonical type string (e.g. "VARCHAR(255)")
        nullable: False for NOT NULL and primary-key columns
        is_primary_key: Column-level or table-level PRIMARY KEY member
        is_foreign_key: Column-level REFERENCES marker present
    """
    name: str
    data_type: str
    nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "dataType": self.data_type,
            "nullable": self.nullable,
            "isPrimaryKey": self.is_primary_key,
            "isForeignKey": self.is_foreign_key,
        }


@dataclass(frozen=True)
class TableSchema:
    name: str
    columns: List[ColumnSchema] = field(default_factory=list)
    schema: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.schema:
            data["schema"] = self.schema
        data["columns"] = [c.to_dict() for c in self.columns]
        return data


@dataclass(frozen=True)
class SchemaModel:
    """Read-only schema lookup structure. All lookups are case-insensitive."""
    tables: Dict[str, Dict[str, str]] = field(default_factory=dict)
    table_details: List[TableSchema] = field(default_factory=list)

    @classmethod
    def from_tables(cls, details: List[TableSchema]) -> "SchemaModel":
        """Build the lookup map from table details (later tables win on name clash)."""
        tables: Dict[str, Dict[str, str]] = {}
        for table in details:
            key = table.name.lower()
            if key in tables:
                logger.warning(f"Table '{table.name}' declared more than once; keeping the last definition")
            tables[key] = {c.name.lower(): c.data_type for c in table.columns}
        return cls(tables=tables, table_details=list(details))

    def table_exists(self, table_name: str) -> bool:
        return bool(table_name) and table_name.lower() in self.tables

    def column_exists(self, table_name: str, column_name: str) -> bool:
        return self.lookup_column(table_name, column_name) is not None

    def lookup_column(self, table_name: str, column_name: str) -> Optional[str]:
        """Data type of table.column, or None if either is unknown."""
        columns = self.tables.get((table_name or "").lower())
        if columns is None:
            return None
        return columns.get((column_name or "").lower())

    def get_table_columns(self, table_name: str) -> Dict[str, str]:
        """Column -> type map for a table (empty if the table is unknown)."""
        return dict(self.tables.get((table_name or "").lower(), {}))

    def get_table_details(self, table_name: str) -> Optional[TableSchema]:
        wanted = (table_name or "").lower()
        match = None
        for table in self.table_details:
            if table.name.lower() == wanted:
                match = table
        return match

    @property
    def table_count(self) -> int:
        return len(self.tables)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": {t: dict(cols) for t, cols in self.tables.items()},
            "tableDetails": [t.to_dict() for t in self.table_details],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaModel":
        """
        Rebuild a model from its wire shape.

        tableDetails is authoritative when present; a bare {"tables": {...}}
        map (as produced by older clients) is also accepted.
        """
        details = []
        for entry in data.get("tableDetails") or []:
            columns = [
                ColumnSchema(
                    name=c["name"],
                    data_type=c.get("dataType", ""),
                    nullable=c.get("nullable", True),
                    is_primary_key=c.get("isPrimaryKey", False),
                    is_foreign_key=c.get("isForeignKey", False),
                )
                for c in entry.get("columns") or []
            ]
            details.append(TableSchema(name=entry["name"], columns=columns, schema=entry.get("schema")))
        if details:
            return cls.from_tables(details)

        tables = {
            str(t).lower(): {str(c).lower(): str(dt) for c, dt in (cols or {}).items()}
            for t, cols in (data.get("tables") or {}).items()
        }
        details = [
            TableSchema(name=t, columns=[ColumnSchema(name=c, data_type=dt) for c, dt in cols.items()])
            for t, cols in tables.items()
        ]
        return cls(tables=tables, table_details=details)
