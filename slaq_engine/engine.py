"""
SLAQ query execution engine.

Runs a parsed statement over an in-memory sequence of log records:
filter, group, project/aggregate, HAVING, order and limit, returning a
tabular QueryResult with execution statistics.
"""

import logging
import time
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import EvaluationError, ExecutionError
from .evaluator import Bindings, evaluate, evaluate_group
from .models import (
    RECORD_FIELDS,
    LogRecord,
    OrderByClause,
    QueryResult,
    SelectStatement,
)
from .parser import parse_query
from .values import Value, ValueType, compare_values

logger = logging.getLogger(__name__)

# Ordering of value types when a sort key mixes incompatible types
_TYPE_RANK = {
    ValueType.BOOLEAN: 0,
    ValueType.INTEGER: 1,
    ValueType.FLOAT: 1,
    ValueType.TIMESTAMP: 2,
    ValueType.STRING: 3,
    ValueType.LIST: 4,
}

GroupKey = Tuple[Value, ...]


@dataclass
class _ExecutionStats:
    """Counters for a single execute() call."""
    skipped: int = 0


class ExecutionEngine:
    """Executes SLAQ statements against log records."""

    def __init__(self, strict: bool = False):
        """Initialize the execution engine.

        Args:
            strict: Raise ExecutionError on the first evaluation failure
                instead of dropping the offending record or group
        """
        self.strict = strict

    def execute(self, statement: SelectStatement, records: Sequence[LogRecord]) -> QueryResult:
        """Execute a statement against a list of records.

        Args:
            statement: The parsed statement
            records: Log records in input order

        Returns:
            QueryResult with rows and statistics

        Raises:
            ExecutionError: In strict mode, when an expression fails to evaluate
        """
        start_time = time.time()
        stats = _ExecutionStats()

        filtered = self._filter(statement, records, stats)

        if statement.is_grouped:
            columns, rows = self._execute_grouped(statement, filtered, stats)
        else:
            columns, rows = self._execute_select(statement, filtered, stats)

        if statement.limit is not None:
            rows = rows[:statement.limit]

        elapsed_ms = (time.time() - start_time) * 1000

        logger.debug(
            f"Query returned {len(rows)} rows from {len(records)} records "
            f"({stats.skipped} skipped) in {elapsed_ms:.2f}ms"
        )

        return QueryResult(
            columns=columns,
            rows=rows,
            count=len(rows),
            skipped_records=stats.skipped,
            execution_time_ms=elapsed_ms,
        )

    def _skip(self, stats: _ExecutionStats, stage: str, error: EvaluationError) -> None:
        """Apply the error policy to a failed evaluation."""
        if self.strict:
            raise ExecutionError(f"Error evaluating {stage}: {error.message}") from error
        stats.skipped += 1
        logger.debug(f"Skipping {stage}: {error.message}")

    def _filter(
        self,
        statement: SelectStatement,
        records: Sequence[LogRecord],
        stats: _ExecutionStats,
    ) -> List[LogRecord]:
        if statement.where is None:
            return list(records)

        filtered = []
        for record in records:
            try:
                result = evaluate(statement.where, record)
            except EvaluationError as e:
                self._skip(stats, "WHERE", e)
                continue
            # Non-boolean results never match
            if result.type is ValueType.BOOLEAN and result.data:
                filtered.append(record)
        return filtered

    def _execute_select(
        self,
        statement: SelectStatement,
        records: List[LogRecord],
        stats: _ExecutionStats,
    ) -> Tuple[List[str], List[List[Value]]]:
        """Project each record; no grouping."""
        if statement.is_wildcard:
            columns = list(RECORD_FIELDS)
        else:
            columns = [field.column_name for field in statement.fields]

        projected: List[Tuple[LogRecord, List[Value]]] = []
        for record in records:
            try:
                if statement.is_wildcard:
                    row = record.to_values()
                else:
                    row = [evaluate(field.expression, record) for field in statement.fields]
            except EvaluationError as e:
                self._skip(stats, "SELECT", e)
                continue
            projected.append((record, row))

        if not statement.order_by:
            return columns, [row for _, row in projected]

        keyed = []
        for record, row in projected:
            bindings = _bind(columns, row)
            try:
                keys = [evaluate(clause.expression, record, bindings) for clause in statement.order_by]
            except EvaluationError as e:
                self._skip(stats, "ORDER BY", e)
                continue
            keyed.append((keys, row))

        def compare(a, b) -> int:
            return _compare_sort_keys(a[0], b[0], statement.order_by)

        keyed.sort(key=cmp_to_key(compare))
        return columns, [row for _, row in keyed]

    def _execute_grouped(
        self,
        statement: SelectStatement,
        records: List[LogRecord],
        stats: _ExecutionStats,
    ) -> Tuple[List[str], List[List[Value]]]:
        """Group records, aggregate, apply HAVING and ORDER BY."""
        columns = [field.column_name for field in statement.fields]
        groups = self._group(statement, records, stats)

        entries = []
        for key, members in groups.items():
            try:
                row = [evaluate_group(field.expression, members) for field in statement.fields]
            except EvaluationError as e:
                self._skip(stats, "SELECT", e)
                continue

            bindings = _bind(columns, row)

            if statement.having is not None:
                try:
                    keep = evaluate_group(statement.having, members, bindings)
                except EvaluationError as e:
                    self._skip(stats, "HAVING", e)
                    continue
                if keep.type is not ValueType.BOOLEAN or not keep.data:
                    continue

            try:
                sort_keys = [
                    evaluate_group(clause.expression, members, bindings)
                    for clause in statement.order_by
                ]
            except EvaluationError as e:
                self._skip(stats, "ORDER BY", e)
                continue

            entries.append((sort_keys, key, row))

        if statement.order_by:
            def compare(a, b) -> int:
                result = _compare_sort_keys(a[0], b[0], statement.order_by)
                if result:
                    return result
                # Equal sort keys fall back to the group key, ascending
                return _compare_group_keys(a[1], b[1])

            entries.sort(key=cmp_to_key(compare))

        return columns, [row for _, _, row in entries]

    def _group(
        self,
        statement: SelectStatement,
        records: List[LogRecord],
        stats: _ExecutionStats,
    ) -> Dict[GroupKey, List[LogRecord]]:
        """Bucket records by their group key, keeping first-seen order."""
        if not statement.group_by:
            # Aggregates without GROUP BY form one group over the whole input
            return {(): records}

        groups: Dict[GroupKey, List[LogRecord]] = {}
        for record in records:
            try:
                key = tuple(evaluate(expression, record) for expression in statement.group_by)
            except EvaluationError as e:
                self._skip(stats, "GROUP BY", e)
                continue
            groups.setdefault(key, []).append(record)
        return groups


def _bind(columns: List[str], row: List[Value]) -> Bindings:
    return {column.lower(): value for column, value in zip(columns, row)}


def _compare_for_sort(left: Value, right: Value) -> int:
    """Typed comparison that still yields a total order for mixed types."""
    try:
        return compare_values(left, right)
    except EvaluationError:
        a = (_TYPE_RANK[left.type], left.display())
        b = (_TYPE_RANK[right.type], right.display())
        if a == b:
            return 0
        return -1 if a < b else 1


def _compare_sort_keys(
    left: List[Value],
    right: List[Value],
    order_by: Sequence[OrderByClause],
) -> int:
    for a, b, clause in zip(left, right, order_by):
        result = _compare_for_sort(a, b)
        if result:
            return -result if clause.descending else result
    return 0


def _compare_group_keys(left: GroupKey, right: GroupKey) -> int:
    for a, b in zip(left, right):
        result = _compare_for_sort(a, b)
        if result:
            return result
    return 0


def execute_query(
    query: str,
    records: Sequence[LogRecord],
    strict: bool = False,
    engine: Optional[ExecutionEngine] = None,
) -> QueryResult:
    """Parse and execute a query in one step.

    Args:
        query: SLAQ query text
        records: Log records to query
        strict: Error policy for a newly created engine
        engine: Optional engine to reuse (its own policy applies)

    Returns:
        The QueryResult

    Raises:
        LexError: On invalid query text
        ParseError: On a malformed query
        ExecutionError: In strict mode, on evaluation failure
    """
    statement = parse_query(query)
    engine = engine or ExecutionEngine(strict=strict)
    return engine.execute(statement, records)
