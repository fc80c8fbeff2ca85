"""
Access-log loading.

Reads Apache/Nginx combined or common log format files (optionally
gzip-compressed) and NDJSON / JSON-array record dumps into LogRecord
instances. Malformed lines are skipped with a warning.
"""

import gzip
import ipaddress
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import RECORD_FIELDS, LogRecord

logger = logging.getLogger(__name__)

COMBINED_PATTERN = re.compile(
    r'^(\S+) \S+ \S+ \[([^\]]+)\] "(\S+) (\S+) (\S+)" (\d+) (\d+|-) "([^"]*)" "([^"]*)"$'
)
COMMON_PATTERN = re.compile(
    r'^(\S+) \S+ \S+ \[([^\]]+)\] "(\S+) (\S+) (\S+)" (\d+) (\d+|-)$'
)

LOG_TIMESTAMP_FORMAT = "%d/%b/%Y:%H:%M:%S %z"

# Accepted spellings of record keys in JSON input, normalized to field names
_KEY_ALIASES = {name.replace("_", ""): name for name in RECORD_FIELDS}
_KEY_ALIASES.update({"useragent": "user_agent", "referrer": "referer", "bytes": "size"})


def parse_log_line(line: str) -> LogRecord:
    """Parse one combined or common log format line.

    Args:
        line: The raw log line

    Returns:
        The parsed LogRecord

    Raises:
        ValueError: If the line matches neither format or holds invalid data
    """
    line = line.strip()
    match = COMBINED_PATTERN.match(line)
    referer, user_agent = "", ""
    if match:
        referer, user_agent = match.group(8), match.group(9)
    else:
        match = COMMON_PATTERN.match(line)
        if not match:
            raise ValueError("line does not match combined or common log format")

    ip = match.group(1)
    _check_ip(ip)

    try:
        timestamp = datetime.strptime(match.group(2), LOG_TIMESTAMP_FORMAT)
    except ValueError as e:
        raise ValueError(f"invalid timestamp: {e}")

    size = match.group(7)

    return LogRecord(
        ip=ip,
        timestamp=timestamp,
        method=match.group(3),
        url=match.group(4),
        protocol=match.group(5),
        status=int(match.group(6)),
        size=0 if size == "-" else int(size),
        referer=referer,
        user_agent=user_agent,
    )


def _check_ip(ip: str) -> None:
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        raise ValueError(f"invalid IP address: {ip}")


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"timestamp out of range: {value!r} ({e})")
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            pass
        try:
            return datetime.strptime(value, LOG_TIMESTAMP_FORMAT)
        except ValueError:
            pass
    raise ValueError(f"invalid timestamp: {value!r}")


def record_from_dict(data: Dict[str, Any]) -> LogRecord:
    """Build a LogRecord from a JSON object.

    Keys are matched case-insensitively, ignoring underscores, so
    ``user_agent``, ``userAgent`` and ``UserAgent`` are equivalent.

    Raises:
        ValueError: If ``ip`` or ``timestamp`` is missing or invalid
    """
    if not isinstance(data, dict):
        raise ValueError("record must be a JSON object")

    fields: Dict[str, Any] = {}
    for key, value in data.items():
        name = _KEY_ALIASES.get(str(key).replace("_", "").lower())
        if name is not None:
            fields[name] = value

    for required in ("ip", "timestamp"):
        if fields.get(required) in (None, ""):
            raise ValueError(f"missing required field: {required}")

    ip = str(fields["ip"])
    _check_ip(ip)

    try:
        status = int(fields.get("status") or 0)
        size = int(fields.get("size") or 0)
    except (TypeError, ValueError, OverflowError):
        raise ValueError("status and size must be integers")

    return LogRecord(
        ip=ip,
        timestamp=_parse_timestamp(fields["timestamp"]),
        method=str(fields.get("method") or ""),
        url=str(fields.get("url") or ""),
        protocol=str(fields.get("protocol") or ""),
        status=status,
        size=size,
        referer=str(fields.get("referer") or ""),
        user_agent=str(fields.get("user_agent") or ""),
    )


def _parse_line(line: str) -> LogRecord:
    if line.startswith('{'):
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON: {e}")
        return record_from_dict(data)
    return parse_log_line(line)


def _read_text(path: Path) -> str:
    if path.suffix.lower() == '.gz':
        with gzip.open(path, 'rt', encoding='utf-8', errors='replace') as f:
            return f.read()
    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        return f.read()


def load_records(input_file: str, limit: Optional[int] = None) -> List[LogRecord]:
    """Load log records from a file.

    Args:
        input_file: Path to a log file (``.gz`` is decompressed)
        limit: Stop after this many records

    Returns:
        Records in file order

    Raises:
        ValueError: If the file does not exist or cannot be read
    """
    path = Path(input_file)

    if not path.exists():
        raise ValueError(f"Input file not found: {input_file}")

    try:
        content = _read_text(path).strip()
    except (OSError, EOFError) as e:
        raise ValueError(f"Failed to read {input_file}: {e}")

    records: List[LogRecord] = []

    if not content:
        return records

    if content.startswith('['):
        # JSON array of record objects
        try:
            items = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON array: {e}")
        for index, item in enumerate(items):
            try:
                records.append(record_from_dict(item))
            except ValueError as e:
                logger.warning(f"Skipping record {index} in {path.name}: {e}")
            if limit is not None and len(records) >= limit:
                break
        logger.info(f"Loaded {len(records)} records from JSON array in {path.name}")
        return records

    skipped = 0
    for line_num, line in enumerate(content.split('\n'), 1):
        line = line.strip()
        if not line:
            continue
        try:
            records.append(_parse_line(line))
        except ValueError as e:
            skipped += 1
            logger.warning(f"Failed to parse line {line_num} in {path.name}: {e}")
            continue
        if limit is not None and len(records) >= limit:
            break

    logger.info(f"Loaded {len(records)} records from {path.name} ({skipped} lines skipped)")
    return records


def _aware(stamp: datetime) -> datetime:
    return stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)


def filter_by_time(
    records: List[LogRecord],
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> List[LogRecord]:
    """Keep records whose timestamp lies within [since, until].

    Naive bounds and timestamps are treated as UTC.
    """
    if since is None and until is None:
        return list(records)

    lower = _aware(since) if since else None
    upper = _aware(until) if until else None

    filtered = []
    for record in records:
        stamp = _aware(record.timestamp)
        if lower is not None and stamp < lower:
            continue
        if upper is not None and stamp > upper:
            continue
        filtered.append(record)

    logger.debug(f"Time window kept {len(filtered)} of {len(records)} records")
    return filtered
