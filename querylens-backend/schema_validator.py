"""
QueryLens - Schema Validator
============================

Annotates the columns of a QueryFact with isValid / dataType using a
SchemaModel. Columns are updated in place; the fact is freshly built per
request so nothing shared is mutated.

RULES:
1. alias -> real table map from the fact's tables (lower-cased)
2. Unqualified column: search every table the query references
   - exactly one table has it -> adopt that table, valid, data type
   - none has it              -> invalid
   - several have it          -> valid, no data type (ambiguous)
3. Qualified column: resolve alias -> table
   - table not in schema      -> left unset (unknown tables are not judged)
   - column found             -> valid, data type
   - column missing           -> invalid

`*` columns are never judged. Nested CTE and subquery facts are validated
with their own table lists.
"""

import logging
from typing import Dict

from query_facts import ColumnFact, QueryFact, dedupe_columns
from schema_model import SchemaModel

logger = logging.getLogger(__name__)


def _alias_map(fact: QueryFact) -> Dict[str, str]:
    aliases: Dict[str, str] = {}
    for table in fact.tables:
        aliases.setdefault(table.name.lower(), table.name.lower())
        if table.alias:
            aliases[table.alias.lower()] = table.name.lower()
    return aliases


def _referenced_tables(fact: QueryFact) -> Dict[str, str]:
    """Lower-cased table name -> the name as written in the query (first seen)."""
    seen: Dict[str, str] = {}
    for table in fact.tables:
        seen.setdefault(table.name.lower(), table.name)
    return seen


def _validate_unqualified(column: ColumnFact, tables: Dict[str, str], schema: SchemaModel) -> None:
    matches = [t for t in tables if schema.column_exists(t, column.name)]

    if len(matches) == 1:
        # Adopt the spelling used by qualified references so dedupe can merge them
        column.table = tables[matches[0]]
        column.is_valid = True
        column.data_type = schema.lookup_column(matches[0], column.name)
    elif not matches:
        column.is_valid = False
        column.data_type = None
    else:
        # Ambiguous: accepted without a type rather than flagged
        logger.debug(f"Column '{column.name}' is ambiguous across {matches}")
        column.is_valid = True
        column.data_type = None


def _validate_qualified(column: ColumnFact, aliases: Dict[str, str], schema: SchemaModel) -> None:
    table = aliases.get(column.table.lower(), column.table.lower())
    if not schema.table_exists(table):
        return

    data_type = schema.lookup_column(table, column.name)
    column.is_valid = data_type is not None
    column.data_type = data_type


def _validate_fact(fact: QueryFact, schema: SchemaModel) -> int:
    aliases = _alias_map(fact)
    tables = _referenced_tables(fact)
    invalid = 0

    for column in fact.columns:
        if column.name == "*":
            continue
        if column.table:
            _validate_qualified(column, aliases, schema)
        else:
            _validate_unqualified(column, tables, schema)
        if column.is_valid is False:
            invalid += 1

    # Adopting a table can make ("", c) collide with (t, c)
    fact.columns = dedupe_columns(fact.columns)

    for child in fact.ctes + fact.subqueries:
        invalid += _validate_fact(child, schema)
    return invalid


def validate(fact: QueryFact, schema: SchemaModel) -> None:
    """Annotate fact's columns (and nested facts) against schema, in place."""
    invalid = _validate_fact(fact, schema)
    if invalid:
        logger.info(f"Schema validation: {invalid} invalid column reference(s)")
    else:
        logger.debug("Schema validation: all column references valid or unknown")
