"""
Smart Log Analyser Query (SLAQ) Engine Package.

A SQL-like query language and execution engine for filtering, grouping,
aggregating and sorting web-server access-log records.
"""

from .engine import ExecutionEngine, execute_query
from .errors import EvaluationError, ExecutionError, LexError, ParseError, QueryError, suggest_correction
from .evaluator import evaluate, evaluate_group
from .formatting import format_result
from .lexer import Token, tokenize
from .loader import filter_by_time, load_records, parse_log_line, record_from_dict
from .models import (
    AggregateCall,
    BinaryOp,
    FieldRef,
    FunctionCall,
    Literal,
    LogRecord,
    Operator,
    OrderByClause,
    QueryResult,
    SelectField,
    SelectStatement,
    UnaryOp,
    Wildcard,
)
from .parser import Parser, parse_query, validate_query
from .values import Value, ValueType

__all__ = [
    'AggregateCall',
    'BinaryOp',
    'EvaluationError',
    'ExecutionEngine',
    'ExecutionError',
    'FieldRef',
    'FunctionCall',
    'LexError',
    'Literal',
    'LogRecord',
    'Operator',
    'OrderByClause',
    'ParseError',
    'Parser',
    'QueryError',
    'QueryResult',
    'SelectField',
    'SelectStatement',
    'Token',
    'UnaryOp',
    'Value',
    'ValueType',
    'Wildcard',
    'evaluate',
    'evaluate_group',
    'execute_query',
    'filter_by_time',
    'format_result',
    'load_records',
    'parse_log_line',
    'parse_query',
    'record_from_dict',
    'suggest_correction',
    'tokenize',
    'validate_query',
]
