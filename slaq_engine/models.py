"""
Data models for the SLAQ engine.

Defines the access-log record consumed by the engine, the expression tree
and statement produced by the parser, and the tabular query result, all as
dataclasses with full type hints and docstrings.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .values import Value


RECORD_FIELDS: Tuple[str, ...] = (
    "ip",
    "timestamp",
    "method",
    "url",
    "protocol",
    "status",
    "size",
    "referer",
    "user_agent",
)


@dataclass(frozen=True)
class LogRecord:
    """A single parsed access-log entry.

    Attributes:
        ip: Client address
        timestamp: Request time (timezone-aware when parsed from a log line)
        method: HTTP method
        url: Requested path
        protocol: HTTP protocol version string
        status: Response status code
        size: Response size in bytes
        referer: Referer header, empty when absent
        user_agent: User-Agent header, empty when absent
    """
    ip: str
    timestamp: datetime
    method: str = ""
    url: str = ""
    protocol: str = ""
    status: int = 0
    size: int = 0
    referer: str = ""
    user_agent: str = ""

    def field_value(self, name: str) -> Optional[Value]:
        """Return the typed value of a record field, or None if unknown."""
        if name not in RECORD_FIELDS:
            return None
        return Value.from_python(getattr(self, name))

    def to_values(self) -> List[Value]:
        """Return all fields in :data:`RECORD_FIELDS` order."""
        return [Value.from_python(getattr(self, name)) for name in RECORD_FIELDS]

    def to_dict(self) -> Dict[str, Any]:
        return {name: Value.from_python(getattr(self, name)).to_json()
                for name in RECORD_FIELDS}


class Operator(str, Enum):
    """Binary and unary operators of the expression language."""

    EQ = "="
    NEQ = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    LIKE = "LIKE"
    MATCHES = "MATCHES"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    IN = "IN"
    IN_RANGE = "IN_RANGE"
    IS_BOT = "IS_BOT"
    IS_ERROR = "IS_ERROR"
    IS_SUCCESS = "IS_SUCCESS"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


PREDICATE_OPERATORS = (Operator.IS_BOT, Operator.IS_ERROR, Operator.IS_SUCCESS)

# Accepted (min, max) argument counts per function
FUNCTION_ARITY: Dict[str, Tuple[int, int]] = {
    "COUNT": (0, 1),
    "SUM": (1, 1),
    "AVG": (1, 1),
    "MIN": (1, 1),
    "MAX": (1, 1),
    "HOUR": (1, 1),
    "DAY": (1, 1),
    "WEEKDAY": (1, 1),
    "DATE": (1, 1),
    "TIME_DIFF": (2, 2),
    "UPPER": (1, 1),
    "LOWER": (1, 1),
    "LENGTH": (1, 1),
    "SUBSTR": (2, 3),
    "IP_TO_INT": (1, 1),
    "IS_PRIVATE_IP": (1, 1),
    "COUNTRY": (1, 1),
}

AGGREGATE_FUNCTIONS = ("COUNT", "SUM", "AVG", "MIN", "MAX")

SCALAR_FUNCTIONS = tuple(name for name in FUNCTION_ARITY if name not in AGGREGATE_FUNCTIONS)


@dataclass(frozen=True)
class FieldRef:
    """Reference to a record field, or to a SELECT alias."""
    name: str

    def render(self) -> str:
        return self.name


@dataclass(frozen=True)
class Literal:
    """A constant value."""
    value: Value

    def render(self) -> str:
        return self.value.render()


@dataclass(frozen=True)
class BinaryOp:
    """A binary operation such as ``status = 404`` or ``a AND b``."""
    left: "Expression"
    operator: Operator
    right: "Expression"

    def render(self) -> str:
        return f"({self.left.render()} {self.operator.value} {self.right.render()})"


@dataclass(frozen=True)
class UnaryOp:
    """NOT, or one of the record predicates (IS_BOT, IS_ERROR, IS_SUCCESS)."""
    operator: Operator
    operand: "Expression"

    def render(self) -> str:
        if self.operator is Operator.NOT:
            return f"(NOT {self.operand.render()})"
        return f"({self.operand.render()} {self.operator.value})"


@dataclass(frozen=True)
class FunctionCall:
    """A scalar function call evaluated once per record."""
    name: str
    args: Tuple["Expression", ...] = ()

    def render(self) -> str:
        return f"{self.name}({', '.join(arg.render() for arg in self.args)})"


@dataclass(frozen=True)
class AggregateCall:
    """An aggregate (COUNT, SUM, AVG, MIN, MAX) evaluated once per group."""
    name: str
    args: Tuple["Expression", ...] = ()

    def render(self) -> str:
        return f"{self.name}({', '.join(arg.render() for arg in self.args)})"


@dataclass(frozen=True)
class Wildcard:
    """The ``*`` of ``SELECT *``."""

    def render(self) -> str:
        return "*"


Expression = Union[FieldRef, Literal, BinaryOp, UnaryOp, FunctionCall, AggregateCall, Wildcard]


def walk(expr: Expression) -> Iterator[Expression]:
    """Yield an expression and all of its sub-expressions, depth first."""
    yield expr
    if isinstance(expr, BinaryOp):
        yield from walk(expr.left)
        yield from walk(expr.right)
    elif isinstance(expr, UnaryOp):
        yield from walk(expr.operand)
    elif isinstance(expr, (FunctionCall, AggregateCall)):
        for arg in expr.args:
            yield from walk(arg)


def contains_aggregate(expr: Expression) -> bool:
    return any(isinstance(node, AggregateCall) for node in walk(expr))


@dataclass(frozen=True)
class SelectField:
    """A projected expression with its optional alias."""
    expression: Expression
    alias: Optional[str] = None

    @property
    def column_name(self) -> str:
        return self.alias or self.expression.render()

    def render(self) -> str:
        if self.alias:
            return f"{self.expression.render()} AS {self.alias}"
        return self.expression.render()


@dataclass(frozen=True)
class OrderByClause:
    """A sort key."""
    expression: Expression
    descending: bool = False

    def render(self) -> str:
        return self.expression.render() + (" DESC" if self.descending else "")


@dataclass(frozen=True)
class SelectStatement:
    """A parsed SLAQ query.

    Attributes:
        fields: Projected expressions in declaration order
        source: Logical table name (always ``logs``)
        where: Optional row filter
        group_by: Grouping expressions, empty when ungrouped
        having: Optional group filter
        order_by: Sort keys in priority order
        limit: Optional maximum number of rows
    """
    fields: Tuple[SelectField, ...]
    source: str = "logs"
    where: Optional[Expression] = None
    group_by: Tuple[Expression, ...] = ()
    having: Optional[Expression] = None
    order_by: Tuple[OrderByClause, ...] = ()
    limit: Optional[int] = None

    @property
    def is_wildcard(self) -> bool:
        return len(self.fields) == 1 and isinstance(self.fields[0].expression, Wildcard)

    @property
    def is_grouped(self) -> bool:
        """True for GROUP BY queries and for whole-table aggregates."""
        if self.group_by:
            return True
        return any(contains_aggregate(f.expression) for f in self.fields)

    def render(self) -> str:
        parts = ["SELECT " + ", ".join(f.render() for f in self.fields)]
        parts.append(f"FROM {self.source}")
        if self.where is not None:
            parts.append("WHERE " + self.where.render())
        if self.group_by:
            parts.append("GROUP BY " + ", ".join(e.render() for e in self.group_by))
        if self.having is not None:
            parts.append("HAVING " + self.having.render())
        if self.order_by:
            parts.append("ORDER BY " + ", ".join(o.render() for o in self.order_by))
        if self.limit is not None:
            parts.append(f"LIMIT {self.limit}")
        return " ".join(parts)


@dataclass
class QueryResult:
    """Tabular result of executing a statement.

    Attributes:
        columns: Column names in projection order
        rows: Result rows, each aligned to ``columns``
        count: Number of rows
        skipped_records: Records or groups dropped because they failed to evaluate
        execution_time_ms: Wall-clock execution time in milliseconds
    """
    columns: List[str]
    rows: List[List[Value]] = field(default_factory=list)
    count: int = 0
    skipped_records: int = 0
    execution_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Return the ``{count, columns, rows}`` payload."""
        return {
            "count": self.count,
            "columns": list(self.columns),
            "rows": [[value.to_json() for value in row] for row in self.rows],
        }
