"""
QueryLens - DDL Extractor
=========================

Builds a SchemaModel from CREATE TABLE statements.

For every CREATE TABLE:
- table name and optional schema qualifier
- per column: canonical type string, nullability, primary / foreign key flags

Rules:
- Columns are nullable unless declared NOT NULL or part of the primary key
- Primary key = column-level PRIMARY KEY  UNION  table-level PRIMARY KEY (...)
- Foreign key = column-level REFERENCES only (table-level FOREIGN KEY
  constraints are not modeled)
- Statements other than CREATE TABLE are skipped

Type canonicalization examples:
    int4, integer        -> INT
    int8                 -> BIGINT
    character varying(255) -> VARCHAR(255)
    numeric(10, 2)       -> NUMERIC(10,2)
    float8               -> DOUBLE PRECISION
    text[]               -> TEXT[]
    my_enum              -> MY_ENUM
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from parse_errors import EmptyInputError, QueryLensError, SQLSyntaxError
from schema_model import ColumnSchema, SchemaModel, TableSchema
from sql_ast import CreateTableStatement, DataTypeSpec, parse_ddl_text

logger = logging.getLogger(__name__)


# =============================================================================
# TYPE NORMALIZATION
# =============================================================================

# lower-cased parser type name -> canonical display name
_TYPE_NAMES: Dict[str, str] = {
    # integer family
    "int": "INT",
    "integer": "INT",
    "int4": "INT",
    "mediumint": "INT",
    "smallint": "SMALLINT",
    "int2": "SMALLINT",
    "tinyint": "SMALLINT",
    "bigint": "BIGINT",
    "int8": "BIGINT",
    "serial": "SERIAL",
    "serial4": "SERIAL",
    "bigserial": "BIGSERIAL",
    "serial8": "BIGSERIAL",
    "smallserial": "SMALLSERIAL",
    "serial2": "SMALLSERIAL",
    # floating point / exact numeric
    "float": "REAL",
    "float4": "REAL",
    "real": "REAL",
    "double": "DOUBLE PRECISION",
    "float8": "DOUBLE PRECISION",
    "decimal": "NUMERIC",
    "numeric": "NUMERIC",
    "money": "MONEY",
    # character
    "varchar": "VARCHAR",
    "nvarchar": "VARCHAR",
    "char": "CHAR",
    "nchar": "CHAR",
    "bpchar": "CHAR",
    "text": "TEXT",
    "citext": "CITEXT",
    # boolean
    "bool": "BOOLEAN",
    "boolean": "BOOLEAN",
    # date / time
    "date": "DATE",
    "time": "TIME",
    "timetz": "TIMETZ",
    "timestamp": "TIMESTAMP",
    "timestampntz": "TIMESTAMP",
    "timestamptz": "TIMESTAMPTZ",
    "timestampltz": "TIMESTAMPTZ",
    "interval": "INTERVAL",
    # binary / document / identifiers
    "bytea": "BYTEA",
    "varbinary": "BYTEA",
    "binary": "BYTEA",
    "blob": "BYTEA",
    "uuid": "UUID",
    "json": "JSON",
    "jsonb": "JSONB",
    "xml": "XML",
    # network
    "inet": "INET",
    "cidr": "CIDR",
    "macaddr": "MACADDR",
    "macaddr8": "MACADDR8",
    # geometric
    "point": "POINT",
    "line": "LINE",
    "lseg": "LSEG",
    "box": "BOX",
    "path": "PATH",
    "polygon": "POLYGON",
    "circle": "CIRCLE",
}

# Canonical types that keep their length / precision parameters
_PARAMETERIZED = {"VARCHAR", "CHAR", "NUMERIC", "TIME", "TIMESTAMP", "BIT", "VARBIT"}


def normalize_data_type(spec: Optional[DataTypeSpec]) -> str:
    """Canonical display string for a declared column type."""
    if spec is None:
        return "UNKNOWN"

    if spec.array_of is not None or spec.name == "array":
        element = normalize_data_type(spec.array_of) if spec.array_of else "UNKNOWN"
        return f"{element}[]"

    known = _TYPE_NAMES.get(spec.name.lower())
    canonical = known or spec.name.upper()

    if spec.params and (known is None or canonical in _PARAMETERIZED):
        params = ",".join(p.strip() for p in spec.params)
        return f"{canonical}({params})"
    return canonical


# =============================================================================
# DDL EXTRACTION
# =============================================================================

def _table_schema(stmt: CreateTableStatement) -> TableSchema:
    table_pk = {name.lower() for name in stmt.primary_key}

    columns = []
    for col in stmt.columns:
        is_pk = col.primary_key or col.name.lower() in table_pk
        columns.append(ColumnSchema(
            name=col.name,
            data_type=normalize_data_type(col.data_type),
            nullable=not (col.not_null or is_pk),
            is_primary_key=is_pk,
            is_foreign_key=col.references is not None,
        ))

    return TableSchema(name=stmt.table.name, columns=columns, schema=stmt.table.schema)


def parse_schema(ddl: str) -> SchemaModel:
    """
    Parse DDL text into a SchemaModel.

    Raises:
        EmptyInputError: blank DDL
        SQLSyntaxError: DDL the parser cannot read
    """
    if ddl is None or not ddl.strip():
        raise EmptyInputError("DDL")

    details: List[TableSchema] = []
    skipped = 0
    for stmt in parse_ddl_text(ddl):
        if isinstance(stmt, CreateTableStatement):
            details.append(_table_schema(stmt))
        else:
            skipped += 1

    if skipped:
        logger.debug(f"Skipped {skipped} non-CREATE TABLE statement(s) in DDL")

    model = SchemaModel.from_tables(details)
    logger.info(f"Schema parsed: {model.table_count} table(s)")
    return model


@dataclass
class SchemaParseResult:
    """
    Tagged result of parse_ddl().

    Attributes:
        success: True when the DDL parsed
        schema: The parsed model (success only)
        error: User-facing error message (failure only)
    """
    success: bool
    schema: Optional[SchemaModel] = None
    error: Optional[str] = None

    @property
    def table_count(self) -> int:
        return self.schema.table_count if self.schema else 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.schema is not None:
            data["schema"] = self.schema.to_dict()
            data["tableCount"] = self.table_count
        if self.error is not None:
            data["error"] = self.error
        return data


def parse_ddl(ddl: str) -> SchemaParseResult:
    """parse_schema() as a tagged result instead of an exception."""
    try:
        return SchemaParseResult(success=True, schema=parse_schema(ddl))
    except QueryLensError as e:
        logger.info(f"DDL rejected: {e}")
        return SchemaParseResult(success=False, error=str(e))


def validate_ddl(ddl: str) -> Dict[str, Any]:
    """Syntax-only check of DDL text: {"valid": bool, "error"?: str}."""
    try:
        parse_ddl_text(ddl)
    except (EmptyInputError, SQLSyntaxError) as e:
        return {"valid": False, "error": str(e)}
    return {"valid": True}
