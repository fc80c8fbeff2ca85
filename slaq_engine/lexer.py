"""
SLAQ tokenizer.

Turns query text into a flat list of tokens, each tagged with the character
offset where it starts. Quoted literals are reclassified after reading
(boolean, timestamp, number or plain string) and bare identifiers are
resolved against the keyword, field and function tables.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .errors import LexError
from .models import AGGREGATE_FUNCTIONS, RECORD_FIELDS, SCALAR_FUNCTIONS
from .values import parse_number


@dataclass(frozen=True)
class Token:
    """Represents a lexical token."""
    type: str
    value: str
    position: int


# Literal token types
LITERAL_TYPES = ("STRING", "NUMBER", "BOOLEAN", "TIMESTAMP")

KEYWORDS = {
    "SELECT": "SELECT",
    "FROM": "FROM",
    "WHERE": "WHERE",
    "GROUP": "GROUP",
    "BY": "BY",
    "ORDER": "ORDER",
    "HAVING": "HAVING",
    "LIMIT": "LIMIT",
    "AS": "AS",
    "ASC": "ASC",
    "DESC": "DESC",
    "AND": "AND",
    "OR": "OR",
    "NOT": "NOT",
    "LIKE": "LIKE",
    "MATCHES": "MATCHES",
    "CONTAINS": "CONTAINS",
    "STARTS_WITH": "STARTS_WITH",
    "ENDS_WITH": "ENDS_WITH",
    "IN": "IN",
    "BETWEEN": "BETWEEN",
    "IN_RANGE": "IN_RANGE",
    "IS_BOT": "IS_BOT",
    "IS_ERROR": "IS_ERROR",
    "IS_SUCCESS": "IS_SUCCESS",
    "TRUE": "BOOLEAN",
    "FALSE": "BOOLEAN",
}

# Tokens that may follow the left operand of a comparison
COMPARISON_TYPES = (
    "EQ", "NEQ", "LT", "LTE", "GT", "GTE",
    "LIKE", "MATCHES", "CONTAINS", "STARTS_WITH", "ENDS_WITH",
    "IN", "BETWEEN", "IN_RANGE", "IS_BOT", "IS_ERROR", "IS_SUCCESS",
)

TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
)

_FUNCTIONS = set(AGGREGATE_FUNCTIONS) | set(SCALAR_FUNCTIONS)


def parse_timestamp_literal(text: str) -> Optional[datetime]:
    """Parse text against the accepted date/time literal formats."""
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


class Tokenizer:
    """Tokenizes SLAQ query strings."""

    # Token patterns, tried in order at each position
    TOKEN_PATTERNS = [
        (r'\s+', 'WHITESPACE'),
        (r'"[^"]*"', 'QUOTED'),
        (r"'[^']*'", 'QUOTED'),
        (r'\d[\d.]*', 'NUMBER'),
        (r'[^\W\d]\w*', 'IDENTIFIER'),
        (r'<=', 'LTE'),
        (r'<>', 'NEQ'),
        (r'>=', 'GTE'),
        (r'!=', 'NEQ'),
        (r'<', 'LT'),
        (r'>', 'GT'),
        (r'=', 'EQ'),
        (r'\(', 'LPAREN'),
        (r'\)', 'RPAREN'),
        (r',', 'COMMA'),
        (r';', 'SEMICOLON'),
        (r'\*', 'STAR'),
    ]

    _COMPILED = [(re.compile(pattern), token_type) for pattern, token_type in TOKEN_PATTERNS]

    def __init__(self, query: str):
        """Initialize tokenizer with a query string."""
        self.query = query
        self.position = 0

    def next_token(self) -> Token:
        """Read the next token; returns EOF at the end and INVALID on junk."""
        while self.position < len(self.query):
            start = self.position
            for regex, token_type in self._COMPILED:
                match = regex.match(self.query, start)
                if not match:
                    continue
                text = match.group(0)
                self.position = match.end()
                if token_type == 'WHITESPACE':
                    break
                if token_type == 'QUOTED':
                    content = text[1:-1]
                    return Token(classify_literal(content), content, start)
                if token_type == 'IDENTIFIER':
                    return classify_identifier(text, start)
                return Token(token_type, text, start)
            else:
                char = self.query[start]
                self.position += 1
                if char in ('"', "'"):
                    return Token('UNTERMINATED', char, start)
                return Token('INVALID', char, start)
        return Token('EOF', '', len(self.query))


def classify_literal(content: str) -> str:
    """Decide the token type of a quoted literal's content."""
    if content.upper() in ("TRUE", "FALSE"):
        return "BOOLEAN"
    if parse_timestamp_literal(content) is not None:
        return "TIMESTAMP"
    try:
        parse_number(content)
        return "NUMBER"
    except ValueError:
        return "STRING"


def classify_identifier(text: str, position: int) -> Token:
    """Resolve a bare identifier to a keyword, field, function or generic field."""
    upper = text.upper()
    if upper in KEYWORDS:
        return Token(KEYWORDS[upper], upper, position)
    if text.lower() in RECORD_FIELDS:
        return Token("FIELD", text.lower(), position)
    if upper in _FUNCTIONS:
        return Token("FUNCTION", text, position)
    # Unknown identifiers stay fields; evaluation reports them if unresolved
    return Token("FIELD", text, position)


def tokenize(query: str) -> List[Token]:
    """Tokenize a SLAQ query.

    Args:
        query: The query text

    Returns:
        Tokens in source order, always ending with exactly one EOF token

    Raises:
        LexError: On an unknown character or unterminated string literal
    """
    tokenizer = Tokenizer(query)
    tokens: List[Token] = []

    while True:
        token = tokenizer.next_token()
        if token.type == 'INVALID':
            raise LexError(f"Invalid character '{token.value}'", token.position)
        if token.type == 'UNTERMINATED':
            raise LexError("Unterminated string literal", token.position)
        tokens.append(token)
        if token.type == 'EOF':
            return tokens
