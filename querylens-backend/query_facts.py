"""
QueryLens - Query Fact Model
============================

Result structures produced by the statement extractor.

QueryFact
  tables          TableFact per FROM / target table reference (plus virtual
                  tables for CTE names and subquery aliases)
  columns         ColumnFact, unique by (table, name); role flags OR-merged
  joins           JoinFact per recognized equi-join edge
  whereConditions "<left> <op> <right>" strings from WHERE comparisons
  ctes            nested QueryFact per CTE body
  subqueries      nested QueryFact per FROM / expression subquery
  rawSql          source text
  parseErrors     non-fatal UnsupportedConstructWarning entries (omitted when empty)

Wire format is camelCase; optional keys are omitted, never null, so the
isValid tri-state (unknown / valid / invalid) survives serialization.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from parse_errors import UnsupportedConstructWarning


class Role(Enum):
    """How a column is used by a statement. Non-exclusive per column."""
    SELECTED = "selected"
    JOIN = "join"
    FILTER = "filter"
    MODIFIED = "modified"


class QueryType(str, Enum):
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CTE = "CTE"


class JoinType(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"
    CROSS = "CROSS"


# =============================================================================
# FACTS
# =============================================================================

@dataclass(frozen=True)
class TableFact:
    name: str
    alias: Optional[str] = None
    schema: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.name, self.alias)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.alias:
            data["alias"] = self.alias
        if self.schema:
            data["schema"] = self.schema
        return data


@dataclass
class ColumnFact:
    """
    One column reference with its usage roles.

    is_valid / data_type stay None until a schema validation pass runs.
    """
    name: str
    table: Optional[str] = None
    alias: Optional[str] = None
    is_selected: bool = False
    is_join_column: bool = False
    is_filter_column: bool = False
    is_modified: bool = False
    is_valid: Optional[bool] = None
    data_type: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table or "", self.name)

    def mark(self, role: Optional[Role]) -> None:
        if role is Role.SELECTED:
            self.is_selected = True
        elif role is Role.JOIN:
            self.is_join_column = True
        elif role is Role.FILTER:
            self.is_filter_column = True
        elif role is Role.MODIFIED:
            self.is_modified = True

    def merge(self, other: "ColumnFact") -> None:
        """OR-merge role flags; the first non-empty alias wins."""
        self.is_selected = self.is_selected or other.is_selected
        self.is_join_column = self.is_join_column or other.is_join_column
        self.is_filter_column = self.is_filter_column or other.is_filter_column
        self.is_modified = self.is_modified or other.is_modified
        if not self.alias and other.alias:
            self.alias = other.alias

    def copy(self) -> "ColumnFact":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name}
        if self.table:
            data["table"] = self.table
        if self.alias:
            data["alias"] = self.alias
        data.update({
            "isSelected": self.is_selected,
            "isJoinColumn": self.is_join_column,
            "isFilterColumn": self.is_filter_column,
            "isModified": self.is_modified,
        })
        if self.is_valid is not None:
            data["isValid"] = self.is_valid
        if self.data_type is not None:
            data["dataType"] = self.data_type
        return data


@dataclass(frozen=True)
class JoinFact:
    """One equi-join edge taken from a `left.col = right.col` ON predicate."""
    type: JoinType
    left_table: str
    right_table: str
    left_column: str
    right_column: str
    condition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "leftTable": self.left_table,
            "rightTable": self.right_table,
            "leftColumn": self.left_column,
            "rightColumn": self.right_column,
        }
        if self.condition:
            data["condition"] = self.condition
        return data


def dedupe_columns(columns: Iterable[ColumnFact]) -> List[ColumnFact]:
    """Collapse columns sharing (table, name), keeping first-seen order."""
    merged: Dict[Tuple[str, str], ColumnFact] = {}
    for col in columns:
        existing = merged.get(col.key)
        if existing is None:
            merged[col.key] = col.copy()
        else:
            existing.merge(col)
    return list(merged.values())


@dataclass
class QueryFact:
    type: QueryType = QueryType.SELECT
    tables: List[TableFact] = field(default_factory=list)
    columns: List[ColumnFact] = field(default_factory=list)
    joins: List[JoinFact] = field(default_factory=list)
    where_conditions: List[str] = field(default_factory=list)
    ctes: List["QueryFact"] = field(default_factory=list)
    subqueries: List["QueryFact"] = field(default_factory=list)
    raw_sql: str = ""
    warnings: List[UnsupportedConstructWarning] = field(default_factory=list)

    # --- building ----------------------------------------------------------

    def add_table(self, table: TableFact) -> TableFact:
        for existing in self.tables:
            if existing.key == table.key:
                return existing
        self.tables.append(table)
        return table

    def add_column(self, column: ColumnFact) -> ColumnFact:
        for existing in self.columns:
            if existing.key == column.key:
                existing.merge(column)
                return existing
        self.columns.append(column)
        return column

    def add_warning(self, warning: UnsupportedConstructWarning) -> None:
        if all(w.message != warning.message for w in self.warnings):
            self.warnings.append(warning)

    def absorb(self, child: "QueryFact") -> None:
        """Merge a nested statement's exposed tables and columns upward."""
        for table in child.tables:
            self.add_table(table)
        for col in child.columns:
            self.add_column(col.copy())
        for warning in child.warnings:
            self.add_warning(warning)

    def flatten(self, other: "QueryFact") -> None:
        """Fold a same-level statement (UNION branch, WITH body) in completely."""
        self.absorb(other)
        self.joins.extend(other.joins)
        self.where_conditions.extend(other.where_conditions)
        self.ctes.extend(other.ctes)
        self.subqueries.extend(other.subqueries)

    # --- lookups -----------------------------------------------------------

    def find_column(self, name: str, table: Optional[str] = None) -> Optional[ColumnFact]:
        for col in self.columns:
            if col.name == name and (col.table or None) == (table or None):
                return col
        return None

    def iter_facts(self):
        """This fact and every nested CTE / subquery fact, depth-first."""
        yield self
        for child in self.ctes + self.subqueries:
            yield from child.iter_facts()

    # --- serialization -----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "tables": [t.to_dict() for t in self.tables],
            "columns": [c.to_dict() for c in self.columns],
            "joins": [j.to_dict() for j in self.joins],
            "whereConditions": list(self.where_conditions),
            "ctes": [c.to_dict() for c in self.ctes],
            "subqueries": [s.to_dict() for s in self.subqueries],
            "rawSql": self.raw_sql,
        }
        if self.warnings:
            data["parseErrors"] = [w.to_dict() for w in self.warnings]
        return data
