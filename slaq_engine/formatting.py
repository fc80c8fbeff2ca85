"""
Rendering of query results as table, CSV or JSON text.
"""

import csv
import io
import json
from typing import List, Optional

from .models import QueryResult

FORMATS = ("table", "csv", "json")

COLUMN_SEPARATOR = " | "


def format_result(result: QueryResult, fmt: str = "table", max_width: Optional[int] = None) -> str:
    """Render a query result.

    Args:
        result: The result to render
        fmt: One of ``table``, ``csv`` or ``json`` (case-insensitive)
        max_width: Truncate table cells to this many characters

    Returns:
        The rendered text

    Raises:
        ValueError: If the format is not supported
    """
    fmt = (fmt or "table").lower()
    if fmt == "table":
        return format_table(result, max_width)
    if fmt == "csv":
        return format_csv(result)
    if fmt == "json":
        return format_json(result)
    raise ValueError(f"Unsupported format: {fmt}")


def _truncate(text: str, max_width: Optional[int]) -> str:
    if max_width is None or len(text) <= max_width:
        return text
    if max_width <= 3:
        return text[:max_width]
    return text[:max_width - 3] + "..."


def format_table(result: QueryResult, max_width: Optional[int] = None) -> str:
    """Fixed-width columns with a header, separator and row count footer."""
    if not result.rows:
        return "No results found."

    header = [_truncate(column, max_width) for column in result.columns]
    cells = [[_truncate(value.display(), max_width) for value in row] for row in result.rows]

    widths = [len(column) for column in header]
    for row in cells:
        for i, text in enumerate(row):
            widths[i] = max(widths[i], len(text))

    def line(texts: List[str]) -> str:
        return COLUMN_SEPARATOR.join(text.ljust(widths[i]) for i, text in enumerate(texts)).rstrip()

    lines = [line(header), "-+-".join("-" * width for width in widths)]
    lines.extend(line(row) for row in cells)
    lines.append("")
    lines.append(f"Total: {result.count} rows")
    return "\n".join(lines)


def format_csv(result: QueryResult) -> str:
    """Header line plus one line per row, quoted where needed."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(result.columns)
    for row in result.rows:
        writer.writerow([value.display() for value in row])
    return buffer.getvalue()


def format_json(result: QueryResult) -> str:
    return json.dumps(result.to_dict(), indent=2)
