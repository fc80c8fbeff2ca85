"""
Tests for log loading, presets, configuration and the run_query CLI.
"""

import gzip
import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

import run_query
from slaq_engine import (
    ParseError,
    execute_query,
    filter_by_time,
    load_records,
    parse_log_line,
    parse_query,
    record_from_dict,
    suggest_correction,
)
from slaq_engine.config import EngineConfig, load_config
from slaq_engine.presets import (
    BUILTIN_PRESETS,
    QueryPreset,
    get_preset,
    load_presets,
    load_presets_file,
    validate_preset,
)

COMBINED_LINE = (
    '192.168.1.5 - - [15/Jan/2024:10:30:00 +0000] "GET /api/users HTTP/1.1" 200 512 '
    '"https://example.com/" "Mozilla/5.0 (X11; Linux x86_64)"'
)
COMMON_LINE = '10.0.0.1 - - [15/Jan/2024:11:00:00 +0000] "POST /login HTTP/1.1" 401 -'

SAMPLE_LOG = "\n".join([
    COMBINED_LINE,
    '10.0.0.1 - - [15/Jan/2024:10:31:00 +0000] "POST /login HTTP/1.1" 401 128 "-" "curl/8.0"',
    'this line is not a log entry',
    '10.0.0.1 - - [15/Jan/2024:10:32:00 +0000] "POST /login HTTP/1.1" 401 128 "-" "curl/8.0"',
    '',
    '8.8.8.8 - - [15/Jan/2024:11:45:00 +0000] "GET /admin/login.php HTTP/1.1" 404 0 "-" "Googlebot/2.1"',
]) + "\n"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as directory:
        yield Path(directory)


@pytest.fixture
def log_file(temp_dir):
    """Write a small access log."""
    path = temp_dir / "access.log"
    path.write_text(SAMPLE_LOG)
    return str(path)


class TestLogLoading:
    """Test cases for the record loader."""

    def test_parse_combined_line(self):
        """Test a combined format line."""
        record = parse_log_line(COMBINED_LINE)

        assert record.ip == "192.168.1.5"
        assert record.timestamp == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert record.method == "GET"
        assert record.url == "/api/users"
        assert record.protocol == "HTTP/1.1"
        assert record.status == 200
        assert record.size == 512
        assert record.referer == "https://example.com/"
        assert record.user_agent == "Mozilla/5.0 (X11; Linux x86_64)"

    def test_parse_common_line(self):
        """Test a common format line with a dash size."""
        record = parse_log_line(COMMON_LINE)

        assert record.status == 401
        assert record.size == 0
        assert record.referer == ""
        assert record.user_agent == ""

    def test_parse_invalid_lines(self):
        """Test malformed lines raise ValueError."""
        for line in [
            "garbage",
            COMBINED_LINE.replace("192.168.1.5", "999.1.1.1"),
            COMBINED_LINE.replace("15/Jan/2024", "15/Foo/2024"),
        ]:
            with pytest.raises(ValueError):
                parse_log_line(line)

    def test_load_skips_malformed_lines(self, log_file):
        """Test malformed lines are skipped and the rest kept in order."""
        records = load_records(log_file)

        assert [r.ip for r in records] == ["192.168.1.5", "10.0.0.1", "10.0.0.1", "8.8.8.8"]

    def test_load_gzip(self, temp_dir):
        """Test gzip-compressed logs."""
        path = temp_dir / "access.log.gz"
        with gzip.open(path, "wt") as f:
            f.write(SAMPLE_LOG)

        assert len(load_records(str(path))) == 4

    def test_load_ndjson(self, temp_dir):
        """Test one JSON record per line."""
        path = temp_dir / "records.jsonl"
        path.write_text("\n".join([
            json.dumps({"ip": "10.0.0.1", "timestamp": "2024-01-15T10:00:00Z", "status": 200}),
            json.dumps({"ip": "10.0.0.2", "timestamp": "2024-01-15T10:01:00Z", "userAgent": "curl/8.0"}),
            json.dumps({"status": 200}),
        ]))

        records = load_records(str(path))

        assert len(records) == 2
        assert records[1].user_agent == "curl/8.0"
        assert records[0].timestamp.tzinfo is not None

    def test_load_json_array(self, temp_dir):
        """Test a JSON array of records."""
        path = temp_dir / "records.json"
        path.write_text(json.dumps([
            {"ip": "10.0.0.1", "timestamp": "2024-01-15T10:00:00+00:00", "url": "/a", "size": 10},
            {"ip": "10.0.0.2", "timestamp": "15/Jan/2024:10:00:00 +0000", "url": "/b", "size": 20},
        ]))

        records = load_records(str(path))

        assert [r.url for r in records] == ["/a", "/b"]
        assert records[0].timestamp == records[1].timestamp

    def test_load_skips_out_of_range_values(self, temp_dir):
        """Test numbers too large for a timestamp or integer skip the line."""
        path = temp_dir / "records.jsonl"
        path.write_text("\n".join([
            json.dumps({"ip": "10.0.0.1", "timestamp": "2024-01-15T10:00:00Z"}),
            json.dumps({"ip": "10.0.0.2", "timestamp": 1e20}),
            '{"ip": "10.0.0.3", "timestamp": "2024-01-15T10:00:00Z", "status": 1e400}',
            '{"ip": "10.0.0.4", "timestamp": "2024-01-15T10:00:00Z", "size": 1e400}',
        ]))

        records = load_records(str(path))

        assert [r.ip for r in records] == ["10.0.0.1"]

    def test_record_from_dict_out_of_range(self):
        """Test overflowing fields raise ValueError."""
        with pytest.raises(ValueError):
            record_from_dict({"ip": "10.0.0.1", "timestamp": 1e20})
        with pytest.raises(ValueError):
            record_from_dict({"ip": "10.0.0.1", "timestamp": 0, "status": float("inf")})

    def test_filter_by_time(self, log_file):
        """Test the inclusive time window, with naive bounds read as UTC."""
        records = load_records(log_file)

        window = filter_by_time(
            records,
            since=datetime(2024, 1, 15, 10, 31),
            until=datetime(2024, 1, 15, 11, 0, tzinfo=timezone.utc),
        )

        assert [r.timestamp.minute for r in window] == [31, 32]
        assert filter_by_time(records) == records
        assert len(filter_by_time(records, until=datetime(2024, 1, 15, 10, 30))) == 1

    def test_load_limit(self, log_file):
        """Test stopping after a number of records."""
        assert len(load_records(log_file, limit=2)) == 2

    def test_load_missing_file(self):
        """Test a missing file raises ValueError."""
        with pytest.raises(ValueError):
            load_records("/nonexistent/access.log")

    def test_load_empty_file(self, temp_dir):
        """Test an empty file yields no records."""
        path = temp_dir / "empty.log"
        path.write_text("")

        assert load_records(str(path)) == []

    def test_record_from_dict_requires_fields(self):
        """Test ip and timestamp are required."""
        with pytest.raises(ValueError):
            record_from_dict({"ip": "10.0.0.1"})
        with pytest.raises(ValueError):
            record_from_dict({"timestamp": "2024-01-15T10:00:00Z"})

    def test_query_loaded_records(self, log_file):
        """Test querying a loaded log end to end."""
        records = load_records(log_file)

        result = execute_query(
            "SELECT ip, COUNT() AS attempts FROM logs WHERE status = 401 GROUP BY ip",
            records,
        )

        assert [[v.data for v in row] for row in result.rows] == [["10.0.0.1", 2]]


class TestPresets:
    """Test cases for query presets."""

    def test_builtin_presets_parse(self):
        """Test every built-in preset query is valid."""
        for preset in BUILTIN_PRESETS:
            parse_query(preset.query)

    def test_builtin_presets_have_unique_names(self):
        """Test preset names are unique."""
        names = [preset.name for preset in BUILTIN_PRESETS]
        assert len(names) == len(set(names))

    def test_get_preset(self):
        """Test lookup by name."""
        preset = get_preset("simple-status-codes")

        assert preset.category == "performance"

        with pytest.raises(ValueError):
            get_preset("no-such-preset")

    def test_validate_preset_rejects_bad_query(self):
        """Test invalid preset queries are reported."""
        with pytest.raises(ValueError):
            validate_preset(QueryPreset(name="broken", query="SELECT FROM logs"))

    def test_validate_preset_rejects_unknown_category(self):
        """Test categories are checked."""
        with pytest.raises(ValueError):
            validate_preset(QueryPreset(name="x", query="SELECT * FROM logs", category="misc"))

    def test_load_presets_file(self, temp_dir):
        """Test YAML presets extend and override the built-ins."""
        path = temp_dir / "presets.yaml"
        path.write_text(
            "presets:\n"
            "  - name: admin-probes\n"
            "    description: Requests for admin pages\n"
            "    query: SELECT ip, url FROM logs WHERE url LIKE '*admin*'\n"
            "  - name: simple-top-ips\n"
            "    category: traffic\n"
            "    query: SELECT ip, COUNT() FROM logs GROUP BY ip\n"
        )

        presets = load_presets(str(path))

        assert presets["admin-probes"].category == "custom"
        assert presets["simple-top-ips"].query == "SELECT ip, COUNT() FROM logs GROUP BY ip"
        assert len(presets) == len(BUILTIN_PRESETS) + 1

    def test_load_presets_file_invalid_query(self, temp_dir):
        """Test a broken preset fails the whole file."""
        path = temp_dir / "presets.yaml"
        path.write_text("presets:\n  - name: bad\n    query: SELECT * FROM logs WHERE (\n")

        with pytest.raises(ValueError):
            load_presets_file(str(path))

    def test_load_presets_file_missing(self):
        """Test a missing presets file raises ValueError."""
        with pytest.raises(ValueError):
            load_presets_file("/nonexistent/presets.yaml")

    def test_preset_runs_against_records(self, log_file):
        """Test a built-in preset executes."""
        records = load_records(log_file)

        result = execute_query(get_preset("traffic-bots").query, records)

        assert sorted(row[0].data for row in result.rows) == ["Googlebot/2.1", "curl/8.0"]


class TestConfig:
    """Test cases for configuration loading."""

    def test_defaults(self):
        """Test defaults when no file is given."""
        config = load_config(None)

        assert config == EngineConfig()
        assert config.default_format == "table"
        assert not config.strict

    def test_load_yaml(self, temp_dir):
        """Test values from a YAML file."""
        path = temp_dir / "config.yaml"
        path.write_text(
            "strict: true\n"
            "default_format: JSON\n"
            "table_max_width: 40\n"
            "log_level: debug\n"
            "presets_file: presets.yaml\n"
        )

        config = load_config(str(path))

        assert config.strict
        assert config.default_format == "json"
        assert config.table_max_width == 40
        assert config.log_level == "DEBUG"
        assert config.presets_file == str(temp_dir / "presets.yaml")

    def test_invalid_values(self, temp_dir):
        """Test invalid settings raise ValueError."""
        for content in ["default_format: xml\n", "table_max_width: 0\n", "log_level: LOUD\n", "- a\n"]:
            path = temp_dir / "config.yaml"
            path.write_text(content)
            with pytest.raises(ValueError):
                load_config(str(path))

    def test_missing_file(self):
        """Test a missing config file raises ValueError."""
        with pytest.raises(ValueError):
            load_config("/nonexistent/config.yaml")


class TestCLI:
    """Test cases for the run_query command line."""

    def test_query_table_output(self, log_file, capsys):
        """Test a query printed as a table."""
        run_query.main([log_file, "-q", "SELECT ip, status FROM logs WHERE status = 404"])

        output = capsys.readouterr().out
        assert "8.8.8.8" in output
        assert "Total: 1 rows" in output

    def test_query_json_output(self, log_file, capsys):
        """Test JSON output."""
        run_query.main([log_file, "-q", "SELECT COUNT() AS n FROM logs", "-f", "json"])

        output = json.loads(capsys.readouterr().out)
        assert output == {"count": 1, "columns": ["n"], "rows": [[4]]}

    def test_query_output_file(self, log_file, temp_dir):
        """Test writing CSV results to a file."""
        output_path = temp_dir / "out.csv"

        run_query.main([log_file, "-q", "SELECT url FROM logs WHERE status = 200", "-f", "csv", "-o", str(output_path)])

        assert output_path.read_text() == "url\n/api/users\n"

    def test_preset(self, log_file, capsys):
        """Test running a preset by name."""
        run_query.main([log_file, "-p", "simple-status-codes", "-f", "csv"])

        lines = capsys.readouterr().out.strip().split("\n")
        assert lines[0] == "status,COUNT()"
        assert lines[1] == "401,2"

    def test_category_batch(self, log_file, capsys):
        """Test running every preset of a category."""
        run_query.main([log_file, "-c", "security"])

        results = json.loads(capsys.readouterr().out)
        assert "security-failed-logins" in results
        assert all(entry["status"] == "success" for entry in results.values())

    def test_list_presets(self, capsys):
        """Test listing presets."""
        run_query.main(["--list-presets"])

        assert "security-failed-logins" in capsys.readouterr().out

    def test_parse_error_exits(self, log_file, capsys):
        """Test a malformed query exits non-zero with a positioned message."""
        with pytest.raises(SystemExit) as exc_info:
            run_query.main([log_file, "-q", "SELECT * FROM logs WHERE (status = 1"])

        assert exc_info.value.code == 1
        assert "position 25" in capsys.readouterr().err

    def test_strict_mode_exits(self, log_file, capsys):
        """Test --strict turns evaluation errors into a failure."""
        with pytest.raises(SystemExit) as exc_info:
            run_query.main([log_file, "-q", "SELECT HOUR(url) FROM logs", "--strict"])

        assert exc_info.value.code == 1
        assert "Query error" in capsys.readouterr().err

    def test_missing_log_file(self, capsys):
        """Test a missing log file exits non-zero."""
        with pytest.raises(SystemExit) as exc_info:
            run_query.main(["/nonexistent/access.log", "-q", "SELECT * FROM logs"])

        assert exc_info.value.code == 1
        assert "Error loading records" in capsys.readouterr().err

    def test_unknown_preset(self, log_file, capsys):
        """Test an unknown preset exits non-zero."""
        with pytest.raises(SystemExit) as exc_info:
            run_query.main([log_file, "-p", "no-such-preset"])

        assert exc_info.value.code == 1

    def test_error_prints_hint(self, log_file, capsys):
        """Test a failed query is followed by a correction hint."""
        with pytest.raises(SystemExit):
            run_query.main([log_file, "-q", "SELECT * FROM logs WHERE (status = 1"])

        assert "Hint: Check that every '(' has a matching ')'" in capsys.readouterr().err

    def test_time_window(self, log_file, capsys):
        """Test --since and --until restrict the queried records."""
        run_query.main([
            log_file, "-q", "SELECT COUNT() AS n FROM logs", "-f", "json",
            "--since", "2024-01-15 10:31:00", "--until", "2024-01-15 11:00:00",
        ])

        assert json.loads(capsys.readouterr().out)["rows"] == [[2]]

    def test_invalid_time_bound(self, log_file, capsys):
        """Test a malformed --since is rejected by argument parsing."""
        with pytest.raises(SystemExit) as exc_info:
            run_query.main([log_file, "-q", "SELECT * FROM logs", "--since", "yesterday"])

        assert exc_info.value.code == 2
        assert "invalid time 'yesterday'" in capsys.readouterr().err


class TestSuggestCorrection:
    """Test cases for query error hints."""

    def test_unknown_field_hint(self):
        """Test unknown fields list the available fields."""
        hint = suggest_correction(Exception("Unknown field: hostname"))

        assert hint.startswith("Available fields: ip, timestamp")

    def test_unknown_table_hint(self):
        """Test a wrong table name points at logs."""
        with pytest.raises(ParseError) as exc_info:
            parse_query("SELECT * FROM requests")

        assert "'logs'" in suggest_correction(exc_info.value)

    def test_group_by_hint(self):
        """Test ungrouped fields point at GROUP BY."""
        with pytest.raises(ParseError) as exc_info:
            parse_query("SELECT ip, url, COUNT() FROM logs GROUP BY ip")

        assert "GROUP BY" in suggest_correction(exc_info.value)

    def test_default_hint(self):
        """Test unrecognised messages get the generic hint."""
        assert suggest_correction(Exception("something odd")) == (
            "Check the query syntax and available fields/functions"
        )
