"""
Exception taxonomy for the SLAQ engine.

Lexer and parser failures abort a query and always carry the character
position of the offending token. Evaluation failures describe a single
record or group; the executor decides whether they abort the query.
"""

from typing import Optional


class QueryError(Exception):
    """Base class for every error raised while processing a query.

    Attributes:
        message: Human-readable description of the problem
        position: Character offset in the query text, if known
        kind: Stage that produced the error (lexer, parser, ...)
    """

    kind = "query"

    def __init__(self, message: str, position: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.position = position

    def __str__(self) -> str:
        if self.position is None:
            return f"Query error: {self.message}"
        return f"Query error at position {self.position}: {self.message}"


class LexError(QueryError):
    """Invalid character or unterminated literal in the query text."""

    kind = "lexer"


class ParseError(QueryError):
    """Grammar violation or invalid statement structure."""

    kind = "parser"


class EvaluationError(QueryError):
    """Type mismatch, unknown field/function or bad argument at runtime."""

    kind = "evaluation"


class ExecutionError(QueryError):
    """Raised by the executor in strict mode when a record cannot be evaluated."""

    kind = "execution"


# Lower-cased message fragments mapped to a hint for the user
_SUGGESTIONS = (
    ("unknown field", "Available fields: ip, timestamp, method, url, protocol, status, size, referer, user_agent"),
    ("unknown function", "Available functions: COUNT, SUM, AVG, MIN, MAX, HOUR, DAY, WEEKDAY, DATE, "
                         "TIME_DIFF, UPPER, LOWER, LENGTH, SUBSTR, IP_TO_INT, IS_PRIVATE_IP, COUNTRY"),
    ("unknown table", "Queries read from the 'logs' table: SELECT ... FROM logs"),
    ("invalid character", "Check for stray symbols; strings are quoted with ' or \""),
    ("unterminated string", "Close the string literal with a matching quote"),
    ("parenthesis", "Check that every '(' has a matching ')'"),
    ("must appear in group by", "Non-aggregated fields must appear in GROUP BY"),
    ("cannot compare", "Compare values of the same type, e.g. status = 404 or url = '/index.html'"),
    ("expected", "Check for missing quotes, parentheses, or keywords like SELECT, FROM, WHERE"),
    ("unexpected", "Check for missing quotes, parentheses, or keywords like SELECT, FROM, WHERE"),
)


def suggest_correction(error: Exception) -> str:
    """Return a short hint for fixing the query that raised ``error``."""
    message = str(error).lower()
    for fragment, suggestion in _SUGGESTIONS:
        if fragment in message:
            return suggestion
    return "Check the query syntax and available fields/functions"
