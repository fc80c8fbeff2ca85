"""
SLAQ expression evaluator.

Two entry points share one operator and function table:

* :func:`evaluate` computes an expression for a single record. Aggregate
  calls are rejected here.
* :func:`evaluate_group` computes an expression for a group of records.
  Aggregate calls fold over every member; everything else is evaluated
  against the group's first record.

Both accept ``bindings``, a map of projected column names and aliases to
values, which is consulted before record fields.
"""

import ipaddress
import re
from datetime import timezone
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Sequence

from .errors import EvaluationError
from .models import (
    AggregateCall,
    BinaryOp,
    Expression,
    FieldRef,
    FunctionCall,
    Literal,
    LogRecord,
    Operator,
    UnaryOp,
    Wildcard,
)
from .values import Value, ValueType, compare_values, parse_number, to_bool

Bindings = Dict[str, Value]

# User-agent fragments that mark automated clients
BOT_KEYWORDS = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "crawl",
    "googlebot",
    "bingbot",
    "slurp",
    "facebookexternalhit",
    "twitterbot",
    "whatsapp",
    "telegram",
    "curl",
    "wget",
    "postman",
    "httpie",
    "python-requests",
    "monitoring",
)

PRIVATE_NETWORKS = tuple(ipaddress.ip_network(cidr) for cidr in (
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "169.254.0.0/16",
    "::1/128",
    "fc00::/7",
    "fe80::/10",
))


def evaluate(
    expression: Expression,
    record: LogRecord,
    bindings: Optional[Bindings] = None,
) -> Value:
    """Evaluate an expression against a single record.

    Args:
        expression: Expression to evaluate
        record: The record supplying field values
        bindings: Optional column/alias values, looked up before fields

    Returns:
        The resulting Value

    Raises:
        EvaluationError: On type mismatches, unknown fields or aggregate calls
    """
    return _Evaluation(record, None, bindings).eval(expression)


def evaluate_group(
    expression: Expression,
    records: Sequence[LogRecord],
    bindings: Optional[Bindings] = None,
) -> Value:
    """Evaluate an expression against a group of records.

    Args:
        expression: Expression to evaluate
        records: Group members in input order (may be empty for a
            whole-table aggregate over no records)
        bindings: Optional column/alias values, looked up before fields

    Returns:
        The resulting Value

    Raises:
        EvaluationError: On type mismatches or unknown fields
    """
    representative = records[0] if records else None
    return _Evaluation(representative, records, bindings).eval(expression)


class _Evaluation:
    """State for evaluating one expression tree."""

    def __init__(
        self,
        record: Optional[LogRecord],
        group: Optional[Sequence[LogRecord]],
        bindings: Optional[Bindings],
    ):
        self.record = record
        self.group = group
        self.bindings = {k.lower(): v for k, v in (bindings or {}).items()}

    def eval(self, expression: Expression) -> Value:
        if isinstance(expression, Literal):
            return expression.value
        if isinstance(expression, FieldRef):
            return self._field(expression.name)
        if isinstance(expression, BinaryOp):
            return self._binary(expression)
        if isinstance(expression, UnaryOp):
            return self._unary(expression)
        if isinstance(expression, FunctionCall):
            return self._function(expression)
        if isinstance(expression, AggregateCall):
            return self._aggregate(expression)
        if isinstance(expression, Wildcard):
            raise EvaluationError("'*' is not a value")
        raise EvaluationError(f"Unknown expression: {expression!r}")

    def _field(self, name: str) -> Value:
        key = name.lower()
        if key in self.bindings:
            return self.bindings[key]
        if self.record is None:
            raise EvaluationError(f"Field '{name}' has no record to read from")
        value = self.record.field_value(key)
        if value is None:
            raise EvaluationError(f"Unknown field: {name}")
        return value

    def _binary(self, expression: BinaryOp) -> Value:
        left = self.eval(expression.left)
        right = self.eval(expression.right)
        handler = BINARY_OPERATORS.get(expression.operator)
        if handler is None:
            raise EvaluationError(f"Unknown operator: {expression.operator.value}")
        return handler(left, right)

    def _unary(self, expression: UnaryOp) -> Value:
        operand = self.eval(expression.operand)
        handler = UNARY_OPERATORS.get(expression.operator)
        if handler is None:
            raise EvaluationError(f"Unknown operator: {expression.operator.value}")
        return handler(operand)

    def _function(self, expression: FunctionCall) -> Value:
        handler = SCALAR_FUNCTION_TABLE.get(expression.name.upper())
        if handler is None:
            raise EvaluationError(f"Unknown function: {expression.name}")
        args = [self.eval(arg) for arg in expression.args]
        return handler(expression.name.upper(), args)

    def _aggregate(self, expression: AggregateCall) -> Value:
        if self.group is None:
            raise EvaluationError(
                f"Aggregate function {expression.name} used outside of a grouped query"
            )

        name = expression.name.upper()

        if name == "COUNT":
            if not expression.args:
                return Value.of_int(len(self.group))
            return Value.of_int(len(self._member_values(expression.args[0], skip_errors=True)))

        values = self._member_values(expression.args[0], skip_errors=False)

        if name in ("SUM", "AVG"):
            numbers = [v for v in values if v.is_numeric]
            if name == "AVG":
                if not numbers:
                    return Value.of_float(0.0)
                return Value.of_float(sum(v.data for v in numbers) / len(numbers))
            if all(v.type is ValueType.INTEGER for v in numbers):
                return Value.of_int(sum(v.data for v in numbers))
            return Value.of_float(sum(v.data for v in numbers))

        if name in ("MIN", "MAX"):
            if not values:
                return Value.of_string("")
            best = values[0]
            for value in values[1:]:
                result = compare_values(value, best)
                if (name == "MIN" and result < 0) or (name == "MAX" and result > 0):
                    best = value
            return best

        raise EvaluationError(f"Unknown aggregate function: {expression.name}")

    def _member_values(self, argument: Expression, skip_errors: bool) -> List[Value]:
        values = []
        for member in self.group:
            try:
                values.append(_Evaluation(member, None, None).eval(argument))
            except EvaluationError:
                if not skip_errors:
                    raise
        return values


# --- operators -------------------------------------------------------------

def _comparison(predicate: Callable[[int], bool]) -> Callable[[Value, Value], Value]:
    def apply(left: Value, right: Value) -> Value:
        return Value.of_bool(predicate(compare_values(left, right)))
    return apply


def _require_strings(operator: str, left: Value, right: Value) -> None:
    if left.type is not ValueType.STRING or right.type is not ValueType.STRING:
        raise EvaluationError(
            f"{operator} requires string operands, got {left.type.value} and {right.type.value}"
        )


@lru_cache(maxsize=256)
def like_pattern(pattern: str) -> "re.Pattern[str]":
    """Translate a LIKE pattern (``*`` any run, ``?`` any char) to a regex."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


@lru_cache(maxsize=256)
def _compile_regex(pattern: str) -> "re.Pattern[str]":
    try:
        return re.compile(pattern)
    except re.error as e:
        raise EvaluationError(f"Invalid regular expression '{pattern}': {e}")


def _like(left: Value, right: Value) -> Value:
    _require_strings("LIKE", left, right)
    return Value.of_bool(like_pattern(right.data).fullmatch(left.data) is not None)


def _matches(left: Value, right: Value) -> Value:
    _require_strings("MATCHES", left, right)
    return Value.of_bool(_compile_regex(right.data).search(left.data) is not None)


def _contains(left: Value, right: Value) -> Value:
    _require_strings("CONTAINS", left, right)
    return Value.of_bool(right.data in left.data)


def _starts_with(left: Value, right: Value) -> Value:
    _require_strings("STARTS_WITH", left, right)
    return Value.of_bool(left.data.startswith(right.data))


def _ends_with(left: Value, right: Value) -> Value:
    _require_strings("ENDS_WITH", left, right)
    return Value.of_bool(left.data.endswith(right.data))


def _in_list(left: Value, right: Value) -> Value:
    if right.type is not ValueType.LIST:
        raise EvaluationError("IN requires a list of values")
    for item in right.data:
        try:
            if compare_values(left, item) == 0:
                return Value.of_bool(True)
        except EvaluationError:
            # Elements of an incompatible type never match
            continue
    return Value.of_bool(False)


def _in_range(left: Value, right: Value) -> Value:
    _require_strings("IN_RANGE", left, right)
    try:
        address = ipaddress.ip_address(left.data.strip())
    except ValueError:
        raise EvaluationError(f"Invalid IP address: {left.data}")
    try:
        network = ipaddress.ip_network(right.data.strip(), strict=False)
    except ValueError:
        raise EvaluationError(f"Invalid CIDR range: {right.data}")
    return Value.of_bool(address.version == network.version and address in network)


def _and(left: Value, right: Value) -> Value:
    return Value.of_bool(to_bool(left) and to_bool(right))


def _or(left: Value, right: Value) -> Value:
    return Value.of_bool(to_bool(left) or to_bool(right))


def _not(operand: Value) -> Value:
    return Value.of_bool(not to_bool(operand))


def _status_code(operator: str, operand: Value) -> float:
    if operand.type is ValueType.STRING:
        try:
            operand = parse_number(operand.data.strip())
        except ValueError:
            pass
    if not operand.is_numeric:
        raise EvaluationError(f"{operator} requires a numeric status, got {operand.type.value}")
    return operand.data


def _is_bot(operand: Value) -> Value:
    if operand.type is not ValueType.STRING:
        raise EvaluationError(f"IS_BOT requires a string, got {operand.type.value}")
    agent = operand.data.lower()
    return Value.of_bool(any(keyword in agent for keyword in BOT_KEYWORDS))


def _is_error(operand: Value) -> Value:
    return Value.of_bool(400 <= _status_code("IS_ERROR", operand) <= 599)


def _is_success(operand: Value) -> Value:
    return Value.of_bool(200 <= _status_code("IS_SUCCESS", operand) <= 299)


BINARY_OPERATORS: Dict[Operator, Callable[[Value, Value], Value]] = {
    Operator.EQ: _comparison(lambda c: c == 0),
    Operator.NEQ: _comparison(lambda c: c != 0),
    Operator.LT: _comparison(lambda c: c < 0),
    Operator.LTE: _comparison(lambda c: c <= 0),
    Operator.GT: _comparison(lambda c: c > 0),
    Operator.GTE: _comparison(lambda c: c >= 0),
    Operator.LIKE: _like,
    Operator.MATCHES: _matches,
    Operator.CONTAINS: _contains,
    Operator.STARTS_WITH: _starts_with,
    Operator.ENDS_WITH: _ends_with,
    Operator.IN: _in_list,
    Operator.IN_RANGE: _in_range,
    Operator.AND: _and,
    Operator.OR: _or,
}

UNARY_OPERATORS: Dict[Operator, Callable[[Value], Value]] = {
    Operator.NOT: _not,
    Operator.IS_BOT: _is_bot,
    Operator.IS_ERROR: _is_error,
    Operator.IS_SUCCESS: _is_success,
}


# --- scalar functions ------------------------------------------------------

def _expect(name: str, value: Value, *types: ValueType) -> None:
    if value.type not in types:
        expected = " or ".join(t.value for t in types)
        raise EvaluationError(f"{name} requires a {expected} argument, got {value.type.value}")


def _hour(name: str, args: List[Value]) -> Value:
    _expect(name, args[0], ValueType.TIMESTAMP)
    return Value.of_int(args[0].data.hour)


def _day(name: str, args: List[Value]) -> Value:
    _expect(name, args[0], ValueType.TIMESTAMP)
    return Value.of_int(args[0].data.day)


def _weekday(name: str, args: List[Value]) -> Value:
    # Sunday is 0
    _expect(name, args[0], ValueType.TIMESTAMP)
    return Value.of_int(args[0].data.isoweekday() % 7)


def _date(name: str, args: List[Value]) -> Value:
    _expect(name, args[0], ValueType.TIMESTAMP)
    return Value.of_string(args[0].data.strftime("%Y-%m-%d"))


def _time_diff(name: str, args: List[Value]) -> Value:
    for arg in args:
        _expect(name, arg, ValueType.TIMESTAMP)
    first, second = args[0].data, args[1].data
    if (first.tzinfo is None) != (second.tzinfo is None):
        first, second = [stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)
                          for stamp in (first, second)]
    return Value.of_float((first - second).total_seconds())


def _upper(name: str, args: List[Value]) -> Value:
    _expect(name, args[0], ValueType.STRING)
    return Value.of_string(args[0].data.upper())


def _lower(name: str, args: List[Value]) -> Value:
    _expect(name, args[0], ValueType.STRING)
    return Value.of_string(args[0].data.lower())


def _length(name: str, args: List[Value]) -> Value:
    _expect(name, args[0], ValueType.STRING)
    return Value.of_int(len(args[0].data))


def _substr(name: str, args: List[Value]) -> Value:
    _expect(name, args[0], ValueType.STRING)
    _expect(name, args[1], ValueType.INTEGER)
    text, start = args[0].data, args[1].data
    if start < 0 or start >= len(text):
        return Value.of_string("")
    end = len(text)
    if len(args) == 3:
        _expect(name, args[2], ValueType.INTEGER)
        end = min(end, start + max(args[2].data, 0))
    return Value.of_string(text[start:end])


def _parse_ip(name: str, value: Value):
    _expect(name, value, ValueType.STRING)
    try:
        return ipaddress.ip_address(value.data.strip())
    except ValueError:
        raise EvaluationError(f"{name}: invalid IP address '{value.data}'")


def _ip_to_int(name: str, args: List[Value]) -> Value:
    return Value.of_int(int(_parse_ip(name, args[0])))


def _is_private_ip(name: str, args: List[Value]) -> Value:
    address = _parse_ip(name, args[0])
    return Value.of_bool(any(
        address.version == network.version and address in network
        for network in PRIVATE_NETWORKS
    ))


def _country(name: str, args: List[Value]) -> Value:
    """Best-effort region bucket from the first octet; not real geolocation."""
    try:
        address = _parse_ip(name, args[0])
    except EvaluationError:
        return Value.of_string("Unknown")
    if _is_private_ip(name, args).data:
        return Value.of_string("Private")
    if address.version != 4:
        return Value.of_string("Unknown")
    first_octet = int(str(address).split(".")[0])
    if 1 <= first_octet <= 126:
        return Value.of_string("US/International")
    if 128 <= first_octet <= 223:
        return Value.of_string("International")
    return Value.of_string("Unknown")


SCALAR_FUNCTION_TABLE: Dict[str, Callable[[str, List[Value]], Value]] = {
    "HOUR": _hour,
    "DAY": _day,
    "WEEKDAY": _weekday,
    "DATE": _date,
    "TIME_DIFF": _time_diff,
    "UPPER": _upper,
    "LOWER": _lower,
    "LENGTH": _length,
    "SUBSTR": _substr,
    "IP_TO_INT": _ip_to_int,
    "IS_PRIVATE_IP": _is_private_ip,
    "COUNTRY": _country,
}
