"""
QueryLens - Statement Extractor
===============================

Walks a parsed statement and produces a QueryFact: the tables it touches,
every column it references (with usage roles), its equi-join edges and the
literal WHERE conditions.

ARCHITECTURE:
    SQL text
       |
    sql_ast.parse_sql_text()      -> [SourceStatement]
       |
    StatementExtractor.extract()  -> QueryFact (one per statement)
       |
    schema_validator.validate()   -> isValid / dataType (optional)

STATEMENT KINDS:
- SELECT: FROM items, select list (selected), WHERE (filter + condition
  strings), GROUP BY / HAVING / ORDER BY (filter)
- INSERT: target table, target-list columns (modified); INSERT ... SELECT
  source becomes a nested subquery
- UPDATE: target table, SET targets (modified), WHERE as SELECT
- DELETE: target table, WHERE as SELECT
- WITH:   each CTE body -> nested fact in `ctes`, CTE name registered as a
          virtual table, main statement merged into the enclosing fact
- UNION:  all branches flattened into one fact
Anything else (DDL, SET, ...) is skipped.

NESTING:
Every nested statement returns its own QueryFact. The parent keeps it in
`ctes` / `subqueries` and merges its tables and columns upward; joins and
conditions stay with the child. UNION branches and the WITH body are
flattened completely.

JOIN EDGES:
Only `ON a.x = b.y` (one equality between two column references) produces
a JoinFact. Any other ON predicate is walked for column references and
reported as an UnsupportedConstructWarning.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from config import get_settings
from parse_errors import QueryLensError, UnsupportedConstructWarning
from query_facts import ColumnFact, JoinFact, JoinType, QueryFact, QueryType, Role, TableFact
from schema_model import SchemaModel
from schema_validator import validate
from sql_ast import (
    COMPARISON_OPERATORS,
    BinaryOp,
    CaseExpr,
    CastExpr,
    ColumnRef,
    DeleteStatement,
    FunctionCall,
    FunctionRef,
    InsertStatement,
    JoinClause,
    ListExpr,
    Literal,
    OtherExpr,
    SelectStatement,
    StarRef,
    Statement,
    SubqueryExpr,
    SubqueryRef,
    TableName,
    TableRef,
    TernaryOp,
    UnaryOp,
    UnionStatement,
    UpdateStatement,
    WithStatement,
    parse_sql_text,
)

logger = logging.getLogger(__name__)

_MODELED_STATEMENTS = (
    SelectStatement, InsertStatement, UpdateStatement, DeleteStatement, WithStatement, UnionStatement,
)

# Negated forms that read naturally as "x NOT <op> y"
_NEGATABLE_OPS = {"IN", "LIKE", "ILIKE"}


# =============================================================================
# NAME RESOLUTION
# =============================================================================

class _Scope:
    """
    Tables visible to one statement, chained to the enclosing statement's
    scope so correlated references (`o.user_id = u.id`) resolve.
    """

    def __init__(self, parent: Optional["_Scope"] = None):
        self.parent = parent
        self.tables: List[TableFact] = []

    def register(self, table: TableFact) -> None:
        self.tables.append(table)

    def resolve(self, qualifier: str) -> Optional[str]:
        """Real table name for an alias or name, alias first; None if unknown."""
        wanted = qualifier.lower()
        for table in self.tables:
            if table.alias and table.alias.lower() == wanted:
                return table.name
        for table in self.tables:
            if table.name.lower() == wanted:
                return table.name
        if self.parent is not None:
            return self.parent.resolve(qualifier)
        return None


# =============================================================================
# STATEMENT EXTRACTOR
# =============================================================================

class StatementExtractor:
    """
    Turns one statement tree into a QueryFact.

    Instances carry only the current nesting depth; use a fresh instance
    (or the module-level helpers) per request.
    """

    def __init__(self, max_depth: Optional[int] = None):
        self.max_depth = max_depth or get_settings().max_depth
        self._depth = 0

    def extract(self, statement: Statement, raw_sql: str = "") -> QueryFact:
        fact = self._statement(statement, None)
        fact.raw_sql = raw_sql
        return fact

    @contextmanager
    def _nested(self, fact: QueryFact, what: str) -> Iterator[bool]:
        """Track nesting depth; yields False once the cap is reached."""
        if self._depth >= self.max_depth:
            message = f"Nesting deeper than {self.max_depth} levels; {what} skipped"
            logger.debug(message)
            fact.add_warning(UnsupportedConstructWarning(message, construct="depth"))
            yield False
            return
        self._depth += 1
        try:
            yield True
        finally:
            self._depth -= 1

    # --- statements --------------------------------------------------------

    def _statement(self, stmt: Statement, parent: Optional[_Scope]) -> QueryFact:
        fact = QueryFact()
        scope = _Scope(parent)

        if isinstance(stmt, SelectStatement):
            self._select(stmt, fact, scope)
        elif isinstance(stmt, InsertStatement):
            self._insert(stmt, fact, scope)
        elif isinstance(stmt, UpdateStatement):
            self._update(stmt, fact, scope)
        elif isinstance(stmt, DeleteStatement):
            self._delete(stmt, fact, scope)
        elif isinstance(stmt, WithStatement):
            self._with(stmt, fact, scope)
        elif isinstance(stmt, UnionStatement):
            self._union(stmt, fact, scope)
        else:
            logger.debug(f"Skipping {type(stmt).__name__}: not an extractable statement")
        return fact

    def _nested_statement(self, stmt: Statement, raw_sql: str, fact: QueryFact, scope: _Scope,
                          what: str) -> Optional[QueryFact]:
        with self._nested(fact, what) as entered:
            if not entered:
                return None
            child = self._statement(stmt, scope)
        child.raw_sql = raw_sql
        fact.absorb(child)
        return child

    def _select(self, stmt: SelectStatement, fact: QueryFact, scope: _Scope) -> None:
        fact.type = QueryType.SELECT
        self._from_items(stmt.from_items, fact, scope)

        select_aliases = set()
        for item in stmt.columns:
            if isinstance(item.expr, StarRef):
                self._record_star(item.expr, fact, scope)
            elif isinstance(item.expr, ColumnRef):
                self._record_column(item.expr, Role.SELECTED, fact, scope, alias=item.alias)
            else:
                self._walk(item.expr, Role.SELECTED, fact, scope)
            if item.alias:
                select_aliases.add(item.alias.lower())

        self._walk(stmt.where, Role.FILTER, fact, scope, conditions=True)

        for expr in stmt.group_by:
            if not self._is_select_alias(expr, select_aliases):
                self._walk(expr, Role.FILTER, fact, scope)
        self._walk(stmt.having, Role.FILTER, fact, scope)
        for expr in stmt.order_by:
            if not self._is_select_alias(expr, select_aliases):
                self._walk(expr, Role.FILTER, fact, scope)

    def _insert(self, stmt: InsertStatement, fact: QueryFact, scope: _Scope) -> None:
        fact.type = QueryType.INSERT
        target = self._register_table(stmt.table, fact, scope)
        for name in stmt.columns:
            fact.add_column(ColumnFact(name=name, table=target.name, is_modified=True))

        if stmt.source is not None:
            child = self._nested_statement(stmt.source, stmt.source_sql, fact, scope, "INSERT source query")
            if child is not None:
                fact.subqueries.append(child)

    def _update(self, stmt: UpdateStatement, fact: QueryFact, scope: _Scope) -> None:
        fact.type = QueryType.UPDATE
        target = self._register_table(stmt.table, fact, scope)
        self._from_items(stmt.from_items, fact, scope)
        for assignment in stmt.assignments:
            fact.add_column(ColumnFact(name=assignment.column, table=target.name, is_modified=True))
            self._walk(assignment.value, None, fact, scope)
        self._walk(stmt.where, Role.FILTER, fact, scope, conditions=True)

    def _delete(self, stmt: DeleteStatement, fact: QueryFact, scope: _Scope) -> None:
        fact.type = QueryType.DELETE
        self._register_table(stmt.table, fact, scope)
        self._from_items(stmt.using, fact, scope)
        self._walk(stmt.where, Role.FILTER, fact, scope, conditions=True)

    def _with(self, stmt: WithStatement, fact: QueryFact, scope: _Scope) -> None:
        for binding in stmt.bindings:
            child = self._nested_statement(binding.statement, binding.sql, fact, scope, f"CTE '{binding.name}'")
            if child is not None:
                fact.ctes.append(child)
            virtual = TableFact(name=binding.name)
            fact.add_table(virtual)
            scope.register(virtual)

        fact.flatten(self._statement(stmt.body, scope))
        fact.type = QueryType.CTE

    def _union(self, stmt: UnionStatement, fact: QueryFact, scope: _Scope) -> None:
        branches = []
        pending: List[Statement] = [stmt]
        while pending:
            node = pending.pop()
            if isinstance(node, UnionStatement):
                pending.append(node.right)
                pending.append(node.left)
            else:
                branches.append(node)

        for branch in branches:
            fact.flatten(self._statement(branch, scope.parent))
        for expr in stmt.order_by:
            self._walk(expr, Role.FILTER, fact, scope)
        fact.type = QueryType.SELECT

    # --- FROM clause -------------------------------------------------------

    def _register_table(self, name: TableName, fact: QueryFact, scope: _Scope) -> TableFact:
        table = fact.add_table(TableFact(name=name.name, alias=name.alias, schema=name.schema))
        scope.register(table)
        return table

    def _from_items(self, items, fact: QueryFact, scope: _Scope) -> None:
        previous: Optional[str] = None
        for item in items:
            current = self._from_item(item, fact, scope)
            if item.join is not None:
                self._join(item.join, previous, current, fact, scope)
            previous = current or previous

    def _from_item(self, item, fact: QueryFact, scope: _Scope) -> Optional[str]:
        """Register one FROM item; returns the table name joins should default to."""
        if isinstance(item, TableRef):
            return self._register_table(item.table, fact, scope).name

        if isinstance(item, SubqueryRef):
            child = self._nested_statement(item.statement, item.sql, fact, scope, "FROM subquery")
            if child is not None:
                fact.subqueries.append(child)
        elif isinstance(item, FunctionRef):
            self._walk(item.function, None, fact, scope)

        if not item.alias:
            return None
        virtual = fact.add_table(TableFact(name=item.alias))
        scope.register(virtual)
        return virtual.name

    def _join(self, clause: JoinClause, left_default: Optional[str], right_default: Optional[str],
              fact: QueryFact, scope: _Scope) -> None:
        join_type = JoinType(clause.join_type)

        for name in clause.using:
            fact.add_column(ColumnFact(name=name, table=left_default, is_join_column=True))
            fact.add_column(ColumnFact(name=name, table=right_default, is_join_column=True))
            if left_default and right_default:
                fact.joins.append(JoinFact(
                    type=join_type,
                    left_table=left_default,
                    right_table=right_default,
                    left_column=name,
                    right_column=name,
                    condition=f"USING ({name})",
                ))

        on = clause.on
        if on is None:
            return

        if (isinstance(on, BinaryOp) and on.op == "="
                and isinstance(on.left, ColumnRef) and isinstance(on.right, ColumnRef)):
            left = self._record_column(on.left, Role.JOIN, fact, scope, default_table=left_default)
            right = self._record_column(on.right, Role.JOIN, fact, scope, default_table=right_default)
            fact.joins.append(JoinFact(
                type=join_type,
                left_table=left.table or "",
                right_table=right.table or "",
                left_column=left.name,
                right_column=right.name,
                condition=on.sql or None,
            ))
            return

        # Remaining references still show up, just without a role
        self._walk(on, None, fact, scope)
        message = f"{join_type.value} JOIN condition is not a single column equality; join edge omitted: {clause.sql}"
        logger.debug(message)
        fact.add_warning(UnsupportedConstructWarning(message, construct="join"))

    # --- expressions -------------------------------------------------------

    def _walk(self, expr, role: Optional[Role], fact: QueryFact, scope: _Scope,
              conditions: bool = False) -> None:
        """
        Record every column reference under expr with the given role.

        With conditions=True (WHERE clauses) each comparison leaf is also
        appended to fact.where_conditions as "<left> <op> <right>".
        """
        if expr is None or isinstance(expr, (Literal, StarRef)):
            return

        if isinstance(expr, ColumnRef):
            self._record_column(expr, role, fact, scope)
        elif isinstance(expr, BinaryOp):
            if expr.op in ("AND", "OR"):
                self._walk(expr.left, role, fact, scope, conditions)
                self._walk(expr.right, role, fact, scope, conditions)
                return
            self._walk(expr.left, role, fact, scope)
            self._walk(expr.right, role, fact, scope)
            if conditions and expr.op in COMPARISON_OPERATORS:
                fact.where_conditions.append(self._condition(expr))
        elif isinstance(expr, UnaryOp):
            if expr.op == "NOT" and conditions:
                self._walk(expr.operand, role, fact, scope)
                if self._is_comparison(expr.operand):
                    fact.where_conditions.append(self._condition(expr.operand, negated=True))
                elif isinstance(expr.operand, (BinaryOp, UnaryOp, TernaryOp)):
                    # NOT over a compound predicate is one condition, not its leaves
                    fact.where_conditions.append(expr.sql)
                return
            self._walk(expr.operand, role, fact, scope, conditions)
            if conditions and expr.op in ("IS NULL", "IS NOT NULL"):
                fact.where_conditions.append(f"{self._operand_text(expr.operand)} {expr.op}")
        elif isinstance(expr, TernaryOp):
            self._walk(expr.value, role, fact, scope)
            self._walk(expr.low, None, fact, scope)
            self._walk(expr.high, None, fact, scope)
            if conditions:
                fact.where_conditions.append(
                    f"{self._operand_text(expr.value)} {expr.op} "
                    f"{self._operand_text(expr.low)} AND {self._operand_text(expr.high)}"
                )
        elif isinstance(expr, SubqueryExpr):
            child = self._nested_statement(expr.statement, expr.body_sql, fact, scope, f"{expr.kind} subquery")
            if child is not None:
                fact.subqueries.append(child)
        elif isinstance(expr, (FunctionCall, CaseExpr, CastExpr, ListExpr, OtherExpr)):
            with self._nested(fact, f"expression '{expr.sql[:40]}'") as entered:
                if entered:
                    for child_expr in self._children(expr):
                        self._walk(child_expr, role, fact, scope)

    @staticmethod
    def _children(expr) -> List[Any]:
        if isinstance(expr, FunctionCall):
            return list(expr.args) + list(expr.partition_by) + list(expr.order_by)
        if isinstance(expr, CaseExpr):
            children = [expr.operand]
            for condition, value in expr.whens:
                children.extend([condition, value])
            children.append(expr.else_)
            return children
        if isinstance(expr, CastExpr):
            return [expr.operand]
        if isinstance(expr, ListExpr):
            return list(expr.items)
        return list(expr.children)

    def _record_column(self, ref: ColumnRef, role: Optional[Role], fact: QueryFact, scope: _Scope,
                       alias: Optional[str] = None, default_table: Optional[str] = None) -> ColumnFact:
        if ref.table:
            table = scope.resolve(ref.table) or ref.table
        else:
            table = default_table
        column = ColumnFact(name=ref.name, table=table, alias=alias)
        column.mark(role)
        return fact.add_column(column)

    def _record_star(self, star: StarRef, fact: QueryFact, scope: _Scope) -> None:
        table = (scope.resolve(star.table) or star.table) if star.table else None
        fact.add_column(ColumnFact(name="*", table=table, is_selected=True))

    @staticmethod
    def _is_select_alias(expr, aliases) -> bool:
        return isinstance(expr, ColumnRef) and not expr.table and expr.name.lower() in aliases

    @staticmethod
    def _is_comparison(expr) -> bool:
        return isinstance(expr, BinaryOp) and expr.op in COMPARISON_OPERATORS

    # --- condition strings -------------------------------------------------

    @staticmethod
    def _operand_text(expr) -> str:
        if expr is None:
            return ""
        if isinstance(expr, ColumnRef):
            return expr.name
        if isinstance(expr, Literal):
            if expr.is_string:
                escaped = expr.value.replace("'", "''")
                return f"'{escaped}'"
            return expr.value
        return expr.sql

    def _condition(self, expr: BinaryOp, negated: bool = False) -> str:
        left = self._operand_text(expr.left)
        right = self._operand_text(expr.right)
        if not negated:
            return f"{left} {expr.op} {right}"
        if expr.op in _NEGATABLE_OPS:
            return f"{left} NOT {expr.op} {right}"
        return f"NOT {left} {expr.op} {right}"


# =============================================================================
# PUBLIC API
# =============================================================================

def extract_query(statement: Statement, raw_sql: str = "") -> QueryFact:
    """Extract a QueryFact from one parsed statement."""
    return StatementExtractor().extract(statement, raw_sql)


def parse_sql(sql: str, schema: Optional[SchemaModel] = None) -> QueryFact:
    """
    Parse SQL text and extract its QueryFact.

    Several `;`-separated statements are merged into one fact whose type is
    that of the last extractable statement. When a schema is given the
    columns are validated against it.

    Raises:
        EmptyInputError: blank SQL
        SQLSyntaxError: SQL the parser cannot read
    """
    sources = parse_sql_text(sql)
    extractor = StatementExtractor()

    if len(sources) == 1:
        fact = extractor.extract(sources[0].statement, raw_sql=sql)
    else:
        fact = QueryFact(raw_sql=sql)
        for source in sources:
            child = extractor.extract(source.statement, raw_sql=source.text)
            fact.flatten(child)
            if isinstance(source.statement, _MODELED_STATEMENTS):
                fact.type = child.type
        logger.info(f"Merged {len(sources)} statements into one query fact")

    if schema is not None:
        validate(fact, schema)

    logger.info(
        f"Extracted {fact.type.value}: {len(fact.tables)} tables, "
        f"{len(fact.columns)} columns, {len(fact.joins)} joins"
    )
    return fact


def parse_statements(sql: str, schema: Optional[SchemaModel] = None) -> List[QueryFact]:
    """One QueryFact per top-level statement, each with its own statement text as rawSql."""
    facts = []
    for source in parse_sql_text(sql):
        fact = StatementExtractor().extract(source.statement, raw_sql=source.text)
        if schema is not None:
            validate(fact, schema)
        facts.append(fact)
    return facts


def validate_sql(sql: str) -> Dict[str, Any]:
    """Syntax-only check: {"valid": bool, "error"?: str}."""
    try:
        parse_sql_text(sql)
    except QueryLensError as e:
        return {"valid": False, "error": str(e)}
    return {"valid": True}


def extract_tables(fact: QueryFact) -> List[TableFact]:
    return list(fact.tables)


def extract_columns(fact: QueryFact, role: Optional[Role] = None) -> List[ColumnFact]:
    """Columns of a fact, optionally only those carrying the given role."""
    if role is None:
        return list(fact.columns)
    flags = {
        Role.SELECTED: "is_selected",
        Role.JOIN: "is_join_column",
        Role.FILTER: "is_filter_column",
        Role.MODIFIED: "is_modified",
    }
    return [c for c in fact.columns if getattr(c, flags[role])]


def extract_joins(fact: QueryFact) -> List[JoinFact]:
    return list(fact.joins)
