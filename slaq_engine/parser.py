"""
SLAQ query parser.

Implements a recursive descent parser that turns the token stream into a
:class:`SelectStatement`, followed by a validation pass that resolves
GROUP BY aliases and checks where aggregate functions may appear.

Precedence, lowest to highest: OR, AND, comparison (non-chaining), NOT,
primary.
"""

from typing import Dict, List, Optional, Set, Tuple

from .errors import ParseError, QueryError
from .lexer import COMPARISON_TYPES, LITERAL_TYPES, Token, parse_timestamp_literal, tokenize
from .models import (
    AGGREGATE_FUNCTIONS,
    FUNCTION_ARITY,
    RECORD_FIELDS,
    AggregateCall,
    BinaryOp,
    Expression,
    FieldRef,
    FunctionCall,
    Literal,
    Operator,
    OrderByClause,
    SelectField,
    SelectStatement,
    UnaryOp,
    Wildcard,
    contains_aggregate,
    walk,
)
from .values import Value, parse_number

_TOKEN_OPERATORS = {
    "EQ": Operator.EQ,
    "NEQ": Operator.NEQ,
    "LT": Operator.LT,
    "LTE": Operator.LTE,
    "GT": Operator.GT,
    "GTE": Operator.GTE,
    "LIKE": Operator.LIKE,
    "MATCHES": Operator.MATCHES,
    "CONTAINS": Operator.CONTAINS,
    "STARTS_WITH": Operator.STARTS_WITH,
    "ENDS_WITH": Operator.ENDS_WITH,
    "IN": Operator.IN,
    "IN_RANGE": Operator.IN_RANGE,
    "IS_BOT": Operator.IS_BOT,
    "IS_ERROR": Operator.IS_ERROR,
    "IS_SUCCESS": Operator.IS_SUCCESS,
}

_PREDICATE_TYPES = ("IS_BOT", "IS_ERROR", "IS_SUCCESS")

SOURCE_TABLE = "logs"


class Parser:
    """Parses SLAQ tokens into a SelectStatement."""

    def __init__(self, tokens: List[Token]):
        """Initialize parser with a list of tokens."""
        self.tokens = tokens
        self.position = 0
        # Start offsets of each clause element, used for validation errors
        self._field_positions: List[int] = []
        self._group_positions: List[int] = []
        self._order_positions: List[int] = []
        self._where_position = 0
        self._having_position = 0

    def _current_token(self) -> Token:
        """Get the current token (the EOF token once input is exhausted)."""
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        end = self.tokens[-1].position if self.tokens else 0
        return Token('EOF', '', end)

    def _peek_token(self, offset: int = 1) -> Token:
        """Peek at a future token."""
        pos = self.position + offset
        if pos < len(self.tokens):
            return self.tokens[pos]
        return self._current_token()

    def _check(self, *types: str) -> bool:
        return self._current_token().type in types

    def _error(self, message: str, token: Optional[Token] = None) -> ParseError:
        token = token or self._current_token()
        return ParseError(message, token.position)

    def _consume(self, expected_type: Optional[str] = None, message: Optional[str] = None) -> Token:
        """Consume and return the current token."""
        token = self._current_token()
        if expected_type and token.type != expected_type:
            if message is None:
                got = "end of input" if token.type == 'EOF' else f"'{token.value}'"
                message = f"Expected {expected_type}, got {got}"
            raise self._error(message, token)
        if token.type != 'EOF':
            self.position += 1
        return token

    def parse(self) -> SelectStatement:
        """Parse and validate the statement."""
        if not self.tokens or self.tokens[0].type == 'EOF':
            raise ParseError("Empty query", 0)
        self._check_parentheses()
        statement = self._parse_select_statement()
        return self._validate(statement)

    def _check_parentheses(self) -> None:
        """Fail fast on unbalanced parentheses anywhere in the query."""
        open_parens: List[Token] = []
        for token in self.tokens:
            if token.type == 'LPAREN':
                open_parens.append(token)
            elif token.type == 'RPAREN':
                if not open_parens:
                    raise ParseError("Unmatched closing parenthesis", token.position)
                open_parens.pop()
        if open_parens:
            raise ParseError("Unmatched opening parenthesis", open_parens[-1].position)

    def _parse_select_statement(self) -> SelectStatement:
        self._consume('SELECT', "Expected SELECT")
        fields = self._parse_select_fields()

        self._consume('FROM', "Expected FROM")
        source = self._current_token()
        if source.type != 'FIELD':
            raise self._error("Expected table name after FROM", source)
        if source.value.lower() != SOURCE_TABLE:
            raise self._error(f"Unknown table '{source.value}', only '{SOURCE_TABLE}' is available", source)
        self._consume()

        clauses: Dict[str, object] = {}

        while not self._check('EOF'):
            token = self._current_token()

            if token.type in clauses:
                raise self._error(f"Duplicate {token.type} clause", token)

            if token.type == 'WHERE':
                self._consume()
                self._where_position = self._current_token().position
                clauses['WHERE'] = self._parse_expression()
            elif token.type == 'GROUP':
                self._consume()
                self._consume('BY', "Expected BY after GROUP")
                clauses['GROUP'] = self._parse_expression_list(self._group_positions)
            elif token.type == 'ORDER':
                self._consume()
                self._consume('BY', "Expected BY after ORDER")
                clauses['ORDER'] = self._parse_order_by()
            elif token.type == 'HAVING':
                self._consume()
                self._having_position = self._current_token().position
                clauses['HAVING'] = self._parse_expression()
            elif token.type == 'LIMIT':
                self._consume()
                clauses['LIMIT'] = self._parse_limit()
            elif token.type == 'SEMICOLON':
                self._consume()
                if not self._check('EOF'):
                    raise self._error(f"Unexpected token after ';': '{self._current_token().value}'")
            else:
                raise self._error(f"Unexpected token: '{token.value}'", token)

        return SelectStatement(
            fields=tuple(fields),
            source=SOURCE_TABLE,
            where=clauses.get('WHERE'),
            group_by=tuple(clauses.get('GROUP', ())),
            having=clauses.get('HAVING'),
            order_by=tuple(clauses.get('ORDER', ())),
            limit=clauses.get('LIMIT'),
        )

    def _parse_select_fields(self) -> List[SelectField]:
        """Parse ``*`` or a comma-separated list of ``expr [AS alias]``."""
        if self._check('STAR'):
            star = self._consume()
            self._field_positions.append(star.position)
            if self._check('COMMA'):
                raise self._error("'*' cannot be combined with other fields")
            return [SelectField(Wildcard())]

        fields = []
        while True:
            self._field_positions.append(self._current_token().position)
            expression = self._parse_expression()
            alias = None
            if self._check('AS'):
                self._consume()
                alias_token = self._current_token()
                if alias_token.type not in ('FIELD', 'FUNCTION'):
                    raise self._error("Expected alias after AS", alias_token)
                self._consume()
                alias = alias_token.value
            fields.append(SelectField(expression, alias))

            if not self._check('COMMA'):
                return fields
            self._consume('COMMA')

    def _parse_expression_list(self, positions: List[int]) -> List[Expression]:
        expressions = []
        while True:
            positions.append(self._current_token().position)
            expressions.append(self._parse_expression())
            if not self._check('COMMA'):
                return expressions
            self._consume('COMMA')

    def _parse_order_by(self) -> List[OrderByClause]:
        clauses = []
        while True:
            self._order_positions.append(self._current_token().position)
            expression = self._parse_expression()
            descending = False
            if self._check('DESC'):
                self._consume()
                descending = True
            elif self._check('ASC'):
                self._consume()
            clauses.append(OrderByClause(expression, descending))
            if not self._check('COMMA'):
                return clauses
            self._consume('COMMA')

    def _parse_limit(self) -> int:
        token = self._consume('NUMBER', "Expected number after LIMIT")
        try:
            value = parse_number(token.value)
        except ValueError:
            raise self._error(f"Invalid LIMIT value: {token.value}", token)
        if not isinstance(value.data, int) or isinstance(value.data, bool):
            raise self._error(f"LIMIT must be an integer, got {token.value}", token)
        if value.data < 0:
            raise self._error("LIMIT must not be negative", token)
        return value.data

    def _parse_expression(self) -> Expression:
        return self._parse_or()

    def _parse_or(self) -> Expression:
        left = self._parse_and()
        while self._check('OR'):
            self._consume()
            left = BinaryOp(left, Operator.OR, self._parse_and())
        return left

    def _parse_and(self) -> Expression:
        left = self._parse_comparison()
        while self._check('AND'):
            self._consume()
            left = BinaryOp(left, Operator.AND, self._parse_comparison())
        return left

    def _parse_comparison(self) -> Expression:
        if self._check('NOT'):
            self._consume()
            return UnaryOp(Operator.NOT, self._parse_comparison())

        left = self._parse_primary()

        if not self._check(*COMPARISON_TYPES):
            return left

        op_token = self._consume()

        if op_token.type == 'BETWEEN':
            low = self._parse_primary()
            self._consume('AND', "Expected AND in BETWEEN expression")
            high = self._parse_primary()
            return BinaryOp(
                BinaryOp(left, Operator.GTE, low),
                Operator.AND,
                BinaryOp(left, Operator.LTE, high),
            )

        if op_token.type == 'IN':
            return BinaryOp(left, Operator.IN, Literal(self._parse_in_list()))

        operator = _TOKEN_OPERATORS[op_token.type]
        if op_token.type in _PREDICATE_TYPES:
            return UnaryOp(operator, left)

        return BinaryOp(left, operator, self._parse_primary())

    def _parse_in_list(self) -> Value:
        self._consume('LPAREN', "Expected '(' after IN")
        values = []
        while True:
            values.append(self._parse_literal(self._consume()))
            if self._check('RPAREN'):
                break
            self._consume('COMMA', "Expected ',' or ')' in IN list")
        self._consume('RPAREN')
        return Value.of_list(values)

    def _parse_primary(self) -> Expression:
        token = self._current_token()

        if token.type == 'FIELD':
            self._consume()
            return FieldRef(token.value)

        if token.type == 'FUNCTION':
            if self._peek_token().type == 'LPAREN':
                return self._parse_function_call()
            # A function name without a call is a reference to an alias
            self._consume()
            return FieldRef(token.value)

        if token.type in _PREDICATE_TYPES and self._peek_token().type == 'LPAREN':
            self._consume()
            self._consume('LPAREN')
            operand = self._parse_expression()
            self._consume('RPAREN', f"Expected ')' after {token.type} argument")
            return UnaryOp(_TOKEN_OPERATORS[token.type], operand)

        if token.type in LITERAL_TYPES:
            self._consume()
            return Literal(self._parse_literal(token))

        if token.type == 'LPAREN':
            self._consume()
            expression = self._parse_expression()
            self._consume('RPAREN', "Expected ')'")
            return expression

        if token.type == 'EOF':
            raise self._error("Unexpected end of input in expression", token)
        raise self._error(f"Unexpected token in expression: '{token.value}'", token)

    def _parse_function_call(self) -> Expression:
        name_token = self._consume('FUNCTION')
        name = name_token.value.upper()
        self._consume('LPAREN')

        args: List[Expression] = []
        if name == "COUNT" and self._check('STAR'):
            self._consume()
        elif not self._check('RPAREN'):
            while True:
                args.append(self._parse_expression())
                if self._check('RPAREN'):
                    break
                self._consume('COMMA', "Expected ',' or ')' in function arguments")

        self._consume('RPAREN', "Expected ')' after function arguments")

        low, high = FUNCTION_ARITY[name]
        if not low <= len(args) <= high:
            expected = str(low) if low == high else f"{low} to {high}"
            raise self._error(
                f"{name} expects {expected} argument(s), got {len(args)}", name_token
            )

        if name in AGGREGATE_FUNCTIONS:
            return AggregateCall(name, tuple(args))
        return FunctionCall(name, tuple(args))

    def _parse_literal(self, token: Token) -> Value:
        if token.type == 'STRING':
            return Value.of_string(token.value)
        if token.type == 'NUMBER':
            try:
                return parse_number(token.value)
            except ValueError:
                raise self._error(f"Invalid number: {token.value}", token)
        if token.type == 'BOOLEAN':
            return Value.of_bool(token.value.upper() == "TRUE")
        if token.type == 'TIMESTAMP':
            stamp = parse_timestamp_literal(token.value)
            if stamp is None:
                raise self._error(f"Invalid date format: {token.value}", token)
            return Value.of_timestamp(stamp)
        raise self._error("Expected literal value", token)

    def _validate(self, statement: SelectStatement) -> SelectStatement:
        """Resolve GROUP BY aliases and check aggregate placement."""
        aliases = {f.alias.lower(): f.expression for f in statement.fields if f.alias}

        if statement.where is not None and contains_aggregate(statement.where):
            raise ParseError("Aggregate functions are not allowed in WHERE", self._where_position)

        for index, field in enumerate(statement.fields):
            _check_nested_aggregates(field.expression, self._field_positions[index])

        group_by = []
        for index, expression in enumerate(statement.group_by):
            if (isinstance(expression, FieldRef)
                    and expression.name.lower() in aliases
                    and expression.name.lower() not in RECORD_FIELDS):
                expression = aliases[expression.name.lower()]
            if contains_aggregate(expression):
                raise ParseError(
                    "Aggregate functions are not allowed in GROUP BY", self._group_positions[index]
                )
            group_by.append(expression)

        statement = SelectStatement(
            fields=statement.fields,
            source=statement.source,
            where=statement.where,
            group_by=tuple(group_by),
            having=statement.having,
            order_by=statement.order_by,
            limit=statement.limit,
        )

        if not statement.is_grouped:
            if statement.having is not None:
                raise ParseError(
                    "HAVING requires GROUP BY or an aggregate function", self._having_position
                )
            for index, clause in enumerate(statement.order_by):
                if contains_aggregate(clause.expression):
                    raise ParseError(
                        "Aggregate functions in ORDER BY require GROUP BY", self._order_positions[index]
                    )
            return statement

        if statement.is_wildcard:
            raise ParseError(
                "SELECT * cannot be combined with GROUP BY or aggregate functions",
                self._field_positions[0],
            )

        group_renders = {expression.render() for expression in statement.group_by}
        group_names = {e.name.lower() for e in statement.group_by if isinstance(e, FieldRef)}
        column_names = {f.column_name.lower() for f in statement.fields} | set(aliases)

        for index, field in enumerate(statement.fields):
            if not _is_group_safe(field.expression, group_renders, group_names):
                raise ParseError(
                    f"Field '{field.expression.render()}' must appear in GROUP BY "
                    f"or be used in an aggregate function",
                    self._field_positions[index],
                )

        if statement.having is not None:
            _check_nested_aggregates(statement.having, self._having_position)
            if not _is_group_safe(statement.having, group_renders, group_names | column_names):
                raise ParseError(
                    "HAVING may only reference grouped fields, aliases or aggregates",
                    self._having_position,
                )

        for index, clause in enumerate(statement.order_by):
            _check_nested_aggregates(clause.expression, self._order_positions[index])
            if not _is_group_safe(clause.expression, group_renders, group_names | column_names):
                raise ParseError(
                    f"ORDER BY '{clause.expression.render()}' must reference a grouped field, "
                    f"an alias or an aggregate",
                    self._order_positions[index],
                )

        return statement


def _check_nested_aggregates(expression: Expression, position: int) -> None:
    for node in walk(expression):
        if isinstance(node, AggregateCall) and any(contains_aggregate(arg) for arg in node.args):
            raise ParseError("Aggregate functions cannot be nested", position)


def _is_group_safe(expression: Expression, group_renders: Set[str], names: Set[str]) -> bool:
    """True if the expression has a single value per group."""
    if expression.render() in group_renders:
        return True
    if isinstance(expression, (AggregateCall, Literal)):
        return True
    if isinstance(expression, FieldRef):
        return expression.name.lower() in names
    if isinstance(expression, BinaryOp):
        return (_is_group_safe(expression.left, group_renders, names)
                and _is_group_safe(expression.right, group_renders, names))
    if isinstance(expression, UnaryOp):
        return _is_group_safe(expression.operand, group_renders, names)
    if isinstance(expression, FunctionCall):
        return all(_is_group_safe(arg, group_renders, names) for arg in expression.args)
    return False


def parse_query(query: str) -> SelectStatement:
    """Parse a SLAQ query string.

    Args:
        query: The SLAQ query string

    Returns:
        The validated SelectStatement

    Raises:
        LexError: If the query contains an invalid character
        ParseError: If the query is malformed
    """
    tokens = tokenize(query)
    parser = Parser(tokens)
    return parser.parse()


def validate_query(query: str) -> Tuple[bool, Optional[str], Optional[int]]:
    """Check a query without executing it.

    Returns:
        A tuple of (is_valid, error_message, error_position)
    """
    try:
        parse_query(query)
    except QueryError as e:
        return False, e.message, e.position
    return True, None, None
