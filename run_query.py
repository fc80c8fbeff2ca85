#!/usr/bin/env python3
"""
CLI entry point for running SLAQ queries against access logs.

Loads a combined/common format log (optionally gzip-compressed) or a
JSON record dump, then executes a single query, a named preset, or every
preset of a category in batch.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from slaq_engine import (
    ExecutionEngine,
    LogRecord,
    QueryError,
    filter_by_time,
    format_result,
    load_records,
    parse_query,
    suggest_correction,
)
from slaq_engine.config import EngineConfig, load_config
from slaq_engine.formatting import FORMATS
from slaq_engine.presets import CATEGORIES, get_preset, load_presets

logger = logging.getLogger('slaq')

TIME_BOUND_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_time_bound(text: str) -> datetime:
    """argparse type for --since/--until (UTC)."""
    try:
        return datetime.strptime(text, TIME_BOUND_FORMAT)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid time '{text}', expected YYYY-MM-DD HH:MM:SS")


def setup_logging(level: str, verbose: bool = False) -> None:
    """Configure logging to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )


def write_output(text: str, output_file: Optional[str] = None) -> None:
    if output_file:
        Path(output_file).write_text(text if text.endswith("\n") else text + "\n")
        logger.info(f"Results saved to {output_file}")
    else:
        print(text)


def execute_single_query(
    query: str,
    records: List[LogRecord],
    config: EngineConfig,
    fmt: str,
    output_file: Optional[str] = None,
) -> None:
    """Execute a single query and print the formatted result.

    Args:
        query: SLAQ query string
        records: Records to query
        config: Engine configuration
        fmt: Output format
        output_file: Optional output file path
    """
    try:
        logger.debug(f"Parsing query: {query}")
        statement = parse_query(query)

        logger.debug(f"Executing query against {len(records)} records")
        engine = ExecutionEngine(strict=config.strict)
        result = engine.execute(statement, records)

        if result.skipped_records:
            logger.info(f"Skipped {result.skipped_records} records that failed to evaluate")

        write_output(format_result(result, fmt, config.table_max_width), output_file)

    except QueryError as e:
        print(str(e), file=sys.stderr)
        print(f"Hint: {suggest_correction(e)}", file=sys.stderr)
        sys.exit(1)


def execute_preset_category(
    category: str,
    records: List[LogRecord],
    config: EngineConfig,
    output_file: Optional[str] = None,
) -> None:
    """Execute every preset of a category and emit the results as JSON.

    Args:
        category: Preset category name
        records: Records to query
        config: Engine configuration
        output_file: Optional output file path
    """
    presets = [p for p in load_presets(config.presets_file).values() if p.category == category]

    if not presets:
        print(f"No presets found in category '{category}'", file=sys.stderr)
        return

    engine = ExecutionEngine(strict=config.strict)
    results = {}

    for preset in presets:
        logger.debug(f"Executing preset: {preset.name}")
        try:
            result = engine.execute(parse_query(preset.query), records)
            results[preset.name] = {
                "status": "success",
                "execution_time_ms": result.execution_time_ms,
                "skipped_records": result.skipped_records,
                **result.to_dict(),
            }
        except QueryError as e:
            results[preset.name] = {
                "status": "error",
                "error": str(e),
            }

    write_output(json.dumps(results, indent=2), output_file)


def list_presets(config: EngineConfig) -> None:
    for preset in load_presets(config.presets_file).values():
        print(f"{preset.name} [{preset.category}]")
        if preset.description:
            print(f"    {preset.description}")
        print(f"    {preset.query}")


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="SLAQ - Query web server access logs with a SQL-like language"
    )

    parser.add_argument(
        "logfile",
        nargs="?",
        help="Path to the access log (combined/common format, .gz, NDJSON or JSON array)",
    )

    mode = parser.add_mutually_exclusive_group()

    mode.add_argument(
        "-q", "--query",
        help="SLAQ query string to execute",
    )

    mode.add_argument(
        "-p", "--preset",
        help="Name of a preset query to execute",
    )

    mode.add_argument(
        "-c", "--category",
        choices=sorted(CATEGORIES),
        help="Execute every preset of a category (JSON output)",
    )

    mode.add_argument(
        "--list-presets",
        action="store_true",
        help="List available presets and exit",
    )

    parser.add_argument(
        "-f", "--format",
        choices=FORMATS,
        help="Output format (default: table, or the config's default_format)",
    )

    parser.add_argument(
        "--since",
        type=parse_time_bound,
        help="Only query records at or after this time (YYYY-MM-DD HH:MM:SS, UTC)",
    )

    parser.add_argument(
        "--until",
        type=parse_time_bound,
        help="Only query records at or before this time (YYYY-MM-DD HH:MM:SS, UTC)",
    )

    parser.add_argument(
        "-o", "--output",
        help="Write results to this file instead of stdout",
    )

    parser.add_argument(
        "--config",
        help="Path to a YAML configuration file",
    )

    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on the first record that cannot be evaluated",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ValueError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.strict:
        config.strict = True

    setup_logging(config.log_level, args.verbose)

    if args.list_presets:
        try:
            list_presets(config)
        except ValueError as e:
            print(f"Error loading presets: {e}", file=sys.stderr)
            sys.exit(1)
        return

    if not args.logfile or not (args.query or args.preset or args.category):
        parser.print_help()
        sys.exit(1)

    query = args.query
    if args.preset:
        try:
            query = get_preset(args.preset, load_presets(config.presets_file)).query
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

    # Load records
    try:
        logger.debug(f"Loading records from {args.logfile}")
        records = load_records(args.logfile)
        logger.debug(f"Loaded {len(records)} records")
        records = filter_by_time(records, args.since, args.until)
    except ValueError as e:
        print(f"Error loading records: {e}", file=sys.stderr)
        sys.exit(1)

    if args.category:
        try:
            execute_preset_category(args.category, records, config, args.output)
        except ValueError as e:
            print(f"Error loading presets: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        execute_single_query(query, records, config, args.format or config.default_format, args.output)


if __name__ == "__main__":
    main()
