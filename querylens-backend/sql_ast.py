"""
QueryLens - SQL AST Binding Layer
=================================

PURPOSE:
This is the ONLY module that talks to the SQL grammar (sqlglot, PostgreSQL
dialect). It turns raw SQL / DDL text into a closed set of frozen node
dataclasses that the extractors dispatch on with isinstance checks.

PIPELINE:
    raw text -> [sqlparse split] -> per-statement text
             -> [sqlglot parse]  -> sqlglot tree
             -> [subset check]   -> reject constructs outside the grammar subset
             -> [conversion]     -> Statement / Expr node dataclasses

GRAMMAR SUBSET:
The extractors are written against a fixed grammar subset. Constructs that
sqlglot can parse but that fall outside the subset are rejected here as
syntax errors, so the rest of the code never sees them. The subset is
published as PARSER_CAPABILITIES for diagnostics and documentation.

Author: QueryLens Team
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import sqlglot
import sqlparse
from sqlglot import exp
from sqlglot.errors import SqlglotError

from config import get_settings
from parse_errors import EmptyInputError, SQLSyntaxError

logger = logging.getLogger(__name__)


# =============================================================================
# PARSER CAPABILITIES
# =============================================================================

@dataclass(frozen=True)
class ParserCapabilities:
    """Static description of what the bound grammar accepts."""
    parser: str
    dialect: str
    supported: Tuple[str, ...]
    unsupported: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parser": self.parser,
            "dialect": self.dialect,
            "supported": list(self.supported),
            "unsupported": list(self.unsupported),
        }


PARSER_CAPABILITIES = ParserCapabilities(
    parser=f"sqlglot {getattr(sqlglot, '__version__', '')}".strip(),
    dialect="postgres",
    supported=(
        "SELECT / INSERT / UPDATE / DELETE",
        "UNION and UNION ALL",
        "INNER / LEFT / RIGHT / FULL / CROSS joins, multi-way joins",
        "Non-recursive CTEs (WITH)",
        "Scalar, correlated, IN and EXISTS subqueries",
        "Window function calls (OVER with PARTITION BY / ORDER BY)",
        "CASE expressions",
        "CAST and :: casts",
        "CREATE TABLE (DDL)",
    ),
    unsupported=(
        "WITH RECURSIVE (recursive CTEs)",
        "INTERSECT set operation",
        "EXCEPT set operation",
        "GROUPING SETS in GROUP BY",
        "ROWS / RANGE window frame clauses",
        "SIMILAR TO operator",
    ),
)

# (sqlglot class name, human readable construct) pairs rejected after parsing
_UNSUPPORTED_NODES = [
    ("Intersect", "INTERSECT set operation"),
    ("Except", "EXCEPT set operation"),
    ("GroupingSets", "GROUPING SETS in GROUP BY"),
    ("WindowSpec", "ROWS / RANGE window frame clause"),
    ("SimilarTo", "SIMILAR TO operator"),
]

_ANSI_ESCAPE = re.compile(r'\x1b\[[0-9;]*m')


# =============================================================================
# NODE TYPES - EXPRESSIONS
# =============================================================================

@dataclass(frozen=True)
class ColumnRef:
    """Column reference, optionally qualified (`u.id` or `id`)."""
    name: str
    table: Optional[str] = None
    sql: str = ""


@dataclass(frozen=True)
class StarRef:
    """`*` or `t.*`."""
    table: Optional[str] = None
    sql: str = "*"


@dataclass(frozen=True)
class Literal:
    """String, number, boolean or NULL constant."""
    value: str
    is_string: bool = False
    sql: str = ""


@dataclass(frozen=True)
class BinaryOp:
    """Boolean connective (AND/OR), comparison or arithmetic operator."""
    op: str
    left: "Expr"
    right: "Expr"
    sql: str = ""


@dataclass(frozen=True)
class UnaryOp:
    """NOT, IS NULL, unary minus."""
    op: str
    operand: "Expr"
    sql: str = ""


@dataclass(frozen=True)
class TernaryOp:
    """BETWEEN / NOT BETWEEN."""
    op: str
    value: "Expr"
    low: Optional["Expr"] = None
    high: Optional["Expr"] = None
    sql: str = ""


@dataclass(frozen=True)
class FunctionCall:
    """Function or aggregate call, with its window clause when called OVER (...)."""
    name: str
    args: Tuple["Expr", ...] = ()
    partition_by: Tuple["Expr", ...] = ()
    order_by: Tuple["Expr", ...] = ()
    sql: str = ""


@dataclass(frozen=True)
class CaseExpr:
    operand: Optional["Expr"]
    whens: Tuple[Tuple["Expr", "Expr"], ...]
    else_: Optional["Expr"] = None
    sql: str = ""


@dataclass(frozen=True)
class CastExpr:
    operand: "Expr"
    to: str
    sql: str = ""


@dataclass(frozen=True)
class ListExpr:
    """Parenthesized value list, tuple or ARRAY[...]."""
    items: Tuple["Expr", ...]
    sql: str = ""


@dataclass(frozen=True)
class SubqueryExpr:
    """A statement used as an expression: scalar, IN (...) or EXISTS (...)."""
    statement: "Statement"
    kind: str = "scalar"
    sql: str = ""
    body_sql: str = ""


@dataclass(frozen=True)
class OtherExpr:
    """Any other expression; only its children matter for extraction."""
    kind: str
    children: Tuple["Expr", ...] = ()
    sql: str = ""


Expr = Union[
    ColumnRef, StarRef, Literal, BinaryOp, UnaryOp, TernaryOp,
    FunctionCall, CaseExpr, CastExpr, ListExpr, SubqueryExpr, OtherExpr,
]


# =============================================================================
# NODE TYPES - FROM CLAUSE
# =============================================================================

@dataclass(frozen=True)
class TableName:
    name: str
    schema: Optional[str] = None
    alias: Optional[str] = None


@dataclass(frozen=True)
class JoinClause:
    """
    The JOIN that attaches a FROM item to the items before it.

    Attributes:
        join_type: INNER, LEFT, RIGHT, FULL or CROSS
        on: ON predicate (None for CROSS / USING / NATURAL joins)
        using: USING (...) column names
    """
    join_type: str
    on: Optional[Expr] = None
    using: Tuple[str, ...] = ()
    sql: str = ""


@dataclass(frozen=True)
class TableRef:
    table: TableName
    join: Optional[JoinClause] = None


@dataclass(frozen=True)
class SubqueryRef:
    statement: "Statement"
    alias: Optional[str] = None
    join: Optional[JoinClause] = None
    sql: str = ""


@dataclass(frozen=True)
class FunctionRef:
    """Set-returning function or VALUES list used as a FROM item."""
    function: Expr
    alias: Optional[str] = None
    join: Optional[JoinClause] = None


FromItem = Union[TableRef, SubqueryRef, FunctionRef]


# =============================================================================
# NODE TYPES - STATEMENTS
# =============================================================================

@dataclass(frozen=True)
class SelectItem:
    expr: Expr
    alias: Optional[str] = None


@dataclass(frozen=True)
class SelectStatement:
    columns: Tuple[SelectItem, ...] = ()
    from_items: Tuple[FromItem, ...] = ()
    where: Optional[Expr] = None
    group_by: Tuple[Expr, ...] = ()
    having: Optional[Expr] = None
    order_by: Tuple[Expr, ...] = ()


@dataclass(frozen=True)
class InsertStatement:
    table: TableName
    columns: Tuple[str, ...] = ()
    source: Optional["Statement"] = None
    source_sql: str = ""


@dataclass(frozen=True)
class Assignment:
    column: str
    value: Optional[Expr] = None


@dataclass(frozen=True)
class UpdateStatement:
    table: TableName
    assignments: Tuple[Assignment, ...] = ()
    from_items: Tuple[FromItem, ...] = ()
    where: Optional[Expr] = None


@dataclass(frozen=True)
class DeleteStatement:
    table: TableName
    using: Tuple[FromItem, ...] = ()
    where: Optional[Expr] = None


@dataclass(frozen=True)
class CommonTableExpr:
    name: str
    statement: "Statement"
    sql: str = ""


@dataclass(frozen=True)
class WithStatement:
    bindings: Tuple[CommonTableExpr, ...]
    body: "Statement"


@dataclass(frozen=True)
class UnionStatement:
    left: "Statement"
    right: "Statement"
    order_by: Tuple[Expr, ...] = ()


@dataclass(frozen=True)
class DataTypeSpec:
    """Declared column type: lower-cased grammar type name plus parameters."""
    name: str
    params: Tuple[str, ...] = ()
    array_of: Optional["DataTypeSpec"] = None


@dataclass(frozen=True)
class ColumnDefinition:
    name: str
    data_type: Optional[DataTypeSpec] = None
    not_null: bool = False
    primary_key: bool = False
    references: Optional[TableName] = None


@dataclass(frozen=True)
class CreateTableStatement:
    table: TableName
    columns: Tuple[ColumnDefinition, ...] = ()
    primary_key: Tuple[str, ...] = ()


@dataclass(frozen=True)
class OtherStatement:
    """Statement kinds the extractors do not model (DROP, SET, ...)."""
    kind: str


Statement = Union[
    SelectStatement, InsertStatement, UpdateStatement, DeleteStatement,
    WithStatement, UnionStatement, CreateTableStatement, OtherStatement,
]


@dataclass(frozen=True)
class SourceStatement:
    """One top-level statement with the exact text it was parsed from."""
    text: str
    line: int
    statement: Statement


# =============================================================================
# SQLGLOT -> NODE CONVERSION
# =============================================================================

def _exp_classes(*names: str) -> Tuple[type, ...]:
    """Resolve sqlglot expression classes by name, skipping ones this version lacks."""
    return tuple(getattr(exp, n) for n in names if hasattr(exp, n))


def _op_table(pairs: Iterable[Tuple[str, str]]) -> Dict[type, str]:
    return {getattr(exp, name): op for name, op in pairs if hasattr(exp, name)}


_COMPARISON_OPS = _op_table([
    ("EQ", "="), ("NEQ", "<>"), ("GT", ">"), ("GTE", ">="), ("LT", "<"), ("LTE", "<="),
    ("Like", "LIKE"), ("ILike", "ILIKE"), ("Is", "IS"),
    ("NullSafeEQ", "IS NOT DISTINCT FROM"), ("NullSafeNEQ", "IS DISTINCT FROM"),
])

_ARITHMETIC_OPS = _op_table([
    ("Add", "+"), ("Sub", "-"), ("Mul", "*"), ("Div", "/"), ("Mod", "%"),
    ("DPipe", "||"), ("BitwiseAnd", "&"), ("BitwiseOr", "|"), ("BitwiseXor", "#"),
    ("Pow", "^"),
])

COMPARISON_OPERATORS = frozenset(_COMPARISON_OPS.values()) | {"IN"}

_QUERY_NODES = _exp_classes("Select", "Union", "Subquery")

_STATEMENT_NODES = _exp_classes(
    "Query", "Select", "SetOperation", "Union", "Subquery",
    "DML", "Insert", "Update", "Delete", "Merge",
    "DDL", "Create", "Drop", "Alter", "TruncateTable",
    "Command", "Transaction", "Commit", "Rollback", "Set", "Use",
    "Describe", "Show", "Copy", "Grant", "Pragma",
)


def _arg(node: exp.Expression, *keys: str) -> Any:
    """First non-empty arg among keys (sqlglot renamed some keys across versions)."""
    for key in keys:
        value = node.args.get(key)
        if value is not None:
            return value
    return None


def _unwrap_query(node: exp.Expression) -> exp.Expression:
    while isinstance(node, (exp.Subquery, exp.Paren)) and isinstance(node.this, exp.Expression):
        node = node.this
    return node


class _Converter:
    """Converts one sqlglot tree into QueryLens node dataclasses."""

    def __init__(self, dialect: str):
        self.dialect = dialect

    def render(self, node: Optional[exp.Expression]) -> str:
        if node is None:
            return ""
        return node.sql(dialect=self.dialect)

    # --- statements --------------------------------------------------------

    def statement(self, node: exp.Expression) -> Statement:
        with_clause = _arg(node, "with", "with_")
        if isinstance(with_clause, exp.With) and with_clause.expressions:
            body = node.copy()
            for key in ("with", "with_"):
                if key in body.args:
                    body.set(key, None)
            bindings = tuple(self.cte(cte) for cte in with_clause.expressions)
            return WithStatement(bindings=bindings, body=self.statement(body))

        node = _unwrap_query(node)

        if isinstance(node, exp.Select):
            return self.select(node)
        if isinstance(node, exp.Union):
            order = node.args.get("order")
            return UnionStatement(
                left=self.statement(node.this),
                right=self.statement(node.expression),
                order_by=self.exprs(order.expressions) if order else (),
            )
        if isinstance(node, exp.Insert):
            return self.insert(node)
        if isinstance(node, exp.Update):
            return UpdateStatement(
                table=self.table_name(node.this),
                assignments=tuple(self.assignment(e) for e in node.expressions),
                from_items=self.from_items(node),
                where=self.clause(node, "where"),
            )
        if isinstance(node, exp.Delete):
            using = tuple(
                item for item in (self.source(t, None) for t in node.args.get("using") or [])
                if item is not None
            )
            return DeleteStatement(
                table=self.table_name(node.this),
                using=using,
                where=self.clause(node, "where"),
            )
        if isinstance(node, exp.Create) and str(node.args.get("kind") or "").upper() == "TABLE":
            return self.create_table(node)

        return OtherStatement(kind=type(node).__name__.upper())

    def cte(self, node: exp.Expression) -> CommonTableExpr:
        return CommonTableExpr(
            name=node.alias,
            statement=self.statement(node.this),
            sql=self.render(node.this),
        )

    def select(self, node: exp.Select) -> SelectStatement:
        items = []
        for projection in node.expressions:
            alias = projection.alias if isinstance(projection, exp.Alias) else None
            items.append(SelectItem(expr=self.expr(projection), alias=alias or None))

        group = node.args.get("group")
        order = node.args.get("order")
        return SelectStatement(
            columns=tuple(items),
            from_items=self.from_items(node),
            where=self.clause(node, "where"),
            group_by=self.exprs(group.iter_expressions()) if group else (),
            having=self.clause(node, "having"),
            order_by=self.exprs(order.expressions) if order else (),
        )

    def insert(self, node: exp.Insert) -> InsertStatement:
        target = node.this
        columns: Tuple[str, ...] = ()
        if isinstance(target, exp.Schema):
            columns = tuple(e.name for e in target.expressions)
            target = target.this

        source = node.args.get("expression")
        if not isinstance(source, _QUERY_NODES):
            return InsertStatement(table=self.table_name(target), columns=columns)
        return InsertStatement(
            table=self.table_name(target),
            columns=columns,
            source=self.statement(source),
            source_sql=self.render(_unwrap_query(source)),
        )

    def assignment(self, node: exp.Expression) -> Assignment:
        if isinstance(node, exp.EQ):
            return Assignment(column=node.this.name, value=self.expr(node.expression))
        return Assignment(column=node.name)

    def clause(self, node: exp.Expression, key: str) -> Optional[Expr]:
        wrapper = node.args.get(key)
        if wrapper is None:
            return None
        return self.expr(wrapper.this)

    def table_name(self, node: Optional[exp.Expression]) -> TableName:
        if isinstance(node, exp.Table):
            return TableName(name=node.name, schema=node.db or None, alias=node.alias or None)
        if node is None:
            return TableName(name="")
        return TableName(name=node.name, alias=node.alias or None)

    # --- FROM clause -------------------------------------------------------

    def from_items(self, node: exp.Expression) -> Tuple[FromItem, ...]:
        items: List[FromItem] = []
        from_clause = _arg(node, "from", "from_")
        if from_clause is not None:
            for source in [from_clause.this] + list(from_clause.expressions):
                item = self.source(source, None)
                if item is not None:
                    items.append(item)

        for join in node.args.get("joins") or []:
            item = self.source(join.this, self.join_clause(join))
            if item is not None:
                items.append(item)
        return tuple(items)

    def join_clause(self, join: exp.Join) -> Optional[JoinClause]:
        kind = (join.kind or "").upper()
        side = (join.side or "").upper()
        on = join.args.get("on")
        using = join.args.get("using") or []

        if kind == "CROSS":
            join_type = "CROSS"
        elif side in ("LEFT", "RIGHT", "FULL"):
            join_type = side
        elif on is None and not using and not kind and not side and not join.args.get("method"):
            # comma-separated FROM item, not a JOIN
            return None
        else:
            join_type = "INNER"

        return JoinClause(
            join_type=join_type,
            on=self.expr(on),
            using=tuple(u.name for u in using),
            sql=self.render(join),
        )

    def source(self, node: Optional[exp.Expression], join: Optional[JoinClause]) -> Optional[FromItem]:
        if node is None:
            return None
        alias = node.alias or None

        if isinstance(node, exp.Lateral):
            inner = node.this
            if isinstance(inner, exp.Subquery):
                return SubqueryRef(
                    self.statement(inner.this),
                    alias=alias or inner.alias or None,
                    join=join,
                    sql=self.render(inner.this),
                )
            return FunctionRef(self.expr(inner), alias=alias, join=join)
        if isinstance(node, exp.Table):
            if isinstance(node.this, exp.Func):
                return FunctionRef(self.expr(node.this), alias=alias, join=join)
            return TableRef(self.table_name(node), join=join)
        if isinstance(node, exp.Subquery):
            return SubqueryRef(self.statement(node.this), alias=alias, join=join, sql=self.render(node.this))
        return FunctionRef(self.expr(node), alias=alias, join=join)

    # --- expressions -------------------------------------------------------

    def exprs(self, nodes: Iterable[exp.Expression]) -> Tuple[Expr, ...]:
        converted = (self.expr(n) for n in nodes)
        return tuple(e for e in converted if e is not None)

    def expr(self, node: Optional[exp.Expression]) -> Optional[Expr]:
        if node is None or not isinstance(node, exp.Expression):
            return None

        if isinstance(node, exp.Column):
            if isinstance(node.this, exp.Star):
                return StarRef(table=node.table or None, sql=f"{node.table}.*" if node.table else "*")
            return ColumnRef(name=node.name, table=node.table or None, sql=self.render(node))
        if isinstance(node, exp.Star):
            return StarRef()
        if isinstance(node, exp.Literal):
            return Literal(value=str(node.this), is_string=node.is_string, sql=self.render(node))
        if isinstance(node, exp.Null):
            return Literal(value="NULL", sql="NULL")
        if isinstance(node, exp.Boolean):
            value = "TRUE" if node.this else "FALSE"
            return Literal(value=value, sql=value)
        if isinstance(node, (exp.Paren, exp.Alias, exp.Ordered)):
            return self.expr(node.this)

        if isinstance(node, _QUERY_NODES):
            return self.subquery(node, "scalar", node)
        if isinstance(node, exp.Exists):
            return self.subquery(node.this, "exists", node)
        if isinstance(node, exp.In):
            return self.in_predicate(node)
        if isinstance(node, exp.Between):
            return self.between(node, negated=bool(node.args.get("negate")))
        if isinstance(node, exp.Not):
            inner = node.this
            if not inner.args.get("negate"):
                if isinstance(inner, exp.Is) and isinstance(inner.expression, exp.Null):
                    return UnaryOp(op="IS NOT NULL", operand=self.expr(inner.this), sql=self.render(node))
                if isinstance(inner, exp.Between):
                    return self.between(inner, negated=True, outer=node)
            return UnaryOp(op="NOT", operand=self.expr(inner), sql=self.render(node))
        if isinstance(node, exp.Is) and isinstance(node.expression, exp.Null):
            op = "IS NOT NULL" if node.args.get("negate") else "IS NULL"
            return UnaryOp(op=op, operand=self.expr(node.this), sql=self.render(node))
        if isinstance(node, exp.Neg):
            return UnaryOp(op="-", operand=self.expr(node.this), sql=self.render(node))
        if isinstance(node, exp.Case):
            whens = tuple(
                (self.expr(branch.this), self.expr(branch.args.get("true")))
                for branch in node.args.get("ifs") or []
            )
            return CaseExpr(
                operand=self.expr(node.this),
                whens=whens,
                else_=self.expr(node.args.get("default")),
                sql=self.render(node),
            )
        if isinstance(node, exp.Cast):
            return CastExpr(operand=self.expr(node.this), to=self.render(node.args.get("to")), sql=self.render(node))
        if isinstance(node, exp.Window):
            return self.window(node)

        if isinstance(node, exp.And):
            return BinaryOp(op="AND", left=self.expr(node.this), right=self.expr(node.expression))
        if isinstance(node, exp.Or):
            return BinaryOp(op="OR", left=self.expr(node.this), right=self.expr(node.expression))

        op = _COMPARISON_OPS.get(type(node)) or _ARITHMETIC_OPS.get(type(node))
        if op is not None:
            return self.negated(node, BinaryOp(
                op=op,
                left=self.expr(node.this),
                right=self.expr(node.expression),
                sql=self.render(node),
            ))

        if isinstance(node, exp.Func):
            return FunctionCall(
                name=self.function_name(node),
                args=self.exprs(node.iter_expressions()),
                sql=self.render(node),
            )
        if isinstance(node, (exp.Tuple, exp.Array)):
            return ListExpr(items=self.exprs(node.expressions), sql=self.render(node))

        return OtherExpr(
            kind=type(node).__name__.upper(),
            children=self.exprs(node.iter_expressions()),
            sql=self.render(node),
        )

    def in_predicate(self, node: exp.In) -> Expr:
        query = node.args.get("query")
        if query is not None:
            right: Expr = self.subquery(query, "in", query)
        else:
            items = self.exprs(node.expressions)
            right = ListExpr(items=items, sql="(" + ", ".join(self.render(e) for e in node.expressions) + ")")
        return self.negated(node, BinaryOp(op="IN", left=self.expr(node.this), right=right, sql=self.render(node)))

    def between(self, node: exp.Between, negated: bool = False,
                outer: Optional[exp.Expression] = None) -> TernaryOp:
        return TernaryOp(
            op="NOT BETWEEN" if negated else "BETWEEN",
            value=self.expr(node.this),
            low=self.expr(node.args.get("low")),
            high=self.expr(node.args.get("high")),
            sql=self.render(outer or node),
        )

    def negated(self, node: exp.Expression, converted: Expr) -> Expr:
        """Newer sqlglot marks `x NOT LIKE y` with negate=True instead of wrapping it in Not."""
        if node.args.get("negate"):
            return UnaryOp(op="NOT", operand=converted, sql=self.render(node))
        return converted

    def subquery(self, query: exp.Expression, kind: str, outer: exp.Expression) -> SubqueryExpr:
        body = _unwrap_query(query)
        return SubqueryExpr(
            statement=self.statement(body),
            kind=kind,
            sql=self.render(outer),
            body_sql=self.render(body),
        )

    def window(self, node: exp.Window) -> Expr:
        inner = self.expr(node.this)
        partition = self.exprs(node.args.get("partition_by") or [])
        order = node.args.get("order")
        order_items = self.exprs(order.expressions) if order else ()
        if isinstance(inner, FunctionCall):
            return replace(inner, partition_by=partition, order_by=order_items, sql=self.render(node))
        children = ((inner,) if inner is not None else ()) + partition + order_items
        return OtherExpr(kind="WINDOW", children=children, sql=self.render(node))

    @staticmethod
    def function_name(node: exp.Func) -> str:
        if isinstance(node, exp.Anonymous):
            return str(node.name).upper()
        return node.sql_name()

    # --- DDL ---------------------------------------------------------------

    def create_table(self, node: exp.Create) -> CreateTableStatement:
        target = node.this
        if not isinstance(target, exp.Schema):
            # CREATE TABLE ... AS SELECT: no column definitions to read
            return CreateTableStatement(table=self.table_name(target))

        columns: List[ColumnDefinition] = []
        primary_key: List[str] = []
        for item in target.expressions:
            if isinstance(item, exp.ColumnDef):
                columns.append(self.column_definition(item))
                continue
            for pk in item.find_all(exp.PrimaryKey):
                primary_key.extend(self.identifier_names(pk.expressions))

        return CreateTableStatement(
            table=self.table_name(target.this),
            columns=tuple(columns),
            primary_key=tuple(primary_key),
        )

    def column_definition(self, node: exp.ColumnDef) -> ColumnDefinition:
        not_null = primary_key = False
        references = None
        for constraint in node.args.get("constraints") or []:
            kind = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else constraint
            if isinstance(kind, exp.NotNullColumnConstraint):
                not_null = not kind.args.get("allow_null")
            elif isinstance(kind, exp.PrimaryKeyColumnConstraint):
                primary_key = True
            elif isinstance(kind, exp.Reference):
                target = kind.this.this if isinstance(kind.this, exp.Schema) else kind.this
                references = self.table_name(target)

        return ColumnDefinition(
            name=node.name,
            data_type=self.data_type(node.args.get("kind")),
            not_null=not_null,
            primary_key=primary_key,
            references=references,
        )

    def data_type(self, node: Optional[exp.Expression]) -> Optional[DataTypeSpec]:
        if node is None:
            return None
        if not isinstance(node, exp.DataType):
            return DataTypeSpec(name=self.render(node).lower())

        type_name = getattr(node.this, "name", str(node.this)).lower()
        if type_name == "array":
            element = node.expressions[0] if node.expressions else None
            return DataTypeSpec(name="array", array_of=self.data_type(element))
        if type_name == "userdefined":
            type_name = str(node.args.get("kind") or self.render(node)).lower()

        params = tuple(p.name or self.render(p) for p in node.expressions)
        return DataTypeSpec(name=type_name, params=params)

    @staticmethod
    def identifier_names(nodes: Iterable[exp.Expression]) -> List[str]:
        names = []
        for node in nodes:
            ident = node if isinstance(node, exp.Identifier) else node.find(exp.Identifier)
            name = ident.name if ident is not None else node.name
            if name:
                names.append(name)
        return names


# =============================================================================
# PARSING ENTRY POINTS
# =============================================================================

def _clean_message(message: str) -> str:
    return _ANSI_ESCAPE.sub("", message).strip()


def _syntax_error(error: SqlglotError, line_offset: int, source: str) -> SQLSyntaxError:
    details = getattr(error, "errors", None) or []
    if details:
        first = details[0]
        description = _clean_message(first.get("description") or str(error))
        line = first.get("line")
        if line is not None:
            line = line + line_offset - 1
        return SQLSyntaxError(description, line=line, column=first.get("col"), source=source)
    return SQLSyntaxError(_clean_message(str(error)).splitlines()[0], source=source)


def _check_subset(node: exp.Expression, source: str) -> None:
    """Reject constructs outside the supported grammar subset."""
    for with_clause in node.find_all(exp.With):
        if with_clause.args.get("recursive"):
            raise SQLSyntaxError("WITH RECURSIVE (recursive CTEs) is not supported", source=source)

    for class_name, construct in _UNSUPPORTED_NODES:
        klass = getattr(exp, class_name, None)
        if klass is not None and node.find(klass) is not None:
            raise SQLSyntaxError(f"{construct} is not supported", source=source)

    for group in node.find_all(exp.Group):
        if group.args.get("grouping_sets"):
            raise SQLSyntaxError("GROUPING SETS in GROUP BY is not supported", source=source)


def split_statements(text: str) -> List[Tuple[str, int]]:
    """
    Split raw text into (statement_text, first_line) pairs.

    Comment-only and empty chunks are dropped. Line numbers are 1-based and
    refer to the original text.
    """
    chunks = []
    cursor = 0
    for chunk in sqlparse.split(text):
        start = text.find(chunk, cursor)
        if start < 0:
            start = cursor
        else:
            cursor = start + len(chunk)
        if not sqlparse.format(chunk, strip_comments=True).strip(" \t\r\n;"):
            continue
        chunks.append((chunk, text.count("\n", 0, start) + 1))
    return chunks


def _parse_chunk(text: str, line: int, dialect: str, source: str) -> List[exp.Expression]:
    try:
        nodes = sqlglot.parse(text, read=dialect)
    except SqlglotError as e:
        raise _syntax_error(e, line, source) from e
    except RecursionError as e:
        raise SQLSyntaxError("statement is nested too deeply to parse", source=source) from e
    return [n for n in nodes if n is not None]


def parse_sql_text(sql: str, dialect: Optional[str] = None, source: str = "SQL") -> List[SourceStatement]:
    """
    Parse SQL text into top-level statements.

    Raises:
        EmptyInputError: blank input
        SQLSyntaxError: unparseable input or a construct outside the grammar subset
    """
    if sql is None or not sql.strip():
        raise EmptyInputError("SQL query" if source == "SQL" else "DDL")

    dialect = dialect or get_settings().sql_dialect
    converter = _Converter(dialect)
    statements: List[SourceStatement] = []

    for text, line in split_statements(sql):
        for node in _parse_chunk(text, line, dialect, source):
            if not isinstance(node, _STATEMENT_NODES):
                raise SQLSyntaxError(
                    f"Expected a SQL statement but found '{_clean_message(node.sql(dialect=dialect))[:60]}'",
                    line=line,
                    column=1,
                    source=source,
                )
            _check_subset(node, source)
            try:
                statement = converter.statement(node)
            except RecursionError as e:
                raise SQLSyntaxError("statement is nested too deeply to analyze", source=source) from e
            statements.append(SourceStatement(text=text, line=line, statement=statement))

    if not statements:
        raise SQLSyntaxError("No valid SQL statements found", source=source)

    logger.debug(f"Parsed {len(statements)} {source} statement(s) with dialect '{dialect}'")
    return statements


def parse_ddl_text(ddl: str, dialect: Optional[str] = None) -> List[Statement]:
    """Parse DDL text; same failure semantics as parse_sql_text."""
    return [s.statement for s in parse_sql_text(ddl, dialect=dialect, source="DDL")]
