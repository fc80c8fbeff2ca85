"""
Tests for the SLAQ Engine FastAPI application.

Tests the IPC request/response envelope for every action, the schema
endpoint and the health check. Uses TestClient with temporary log and
presets files.
"""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from slaq_engine.api import create_app
from slaq_engine.config import EngineConfig
from slaq_engine.models import RECORD_FIELDS
from slaq_engine.presets import BUILTIN_PRESETS

SAMPLE_LOG = "\n".join([
    '10.0.0.1 - - [15/Jan/2024:10:30:00 +0000] "POST /login HTTP/1.1" 401 128 "-" "Mozilla/5.0"',
    '10.0.0.2 - - [15/Jan/2024:10:31:00 +0000] "POST /login HTTP/1.1" 401 128 "-" "curl/8.0"',
    '10.0.0.1 - - [15/Jan/2024:10:32:00 +0000] "GET /index.html HTTP/1.1" 200 2048 "-" "Mozilla/5.0"',
    '10.0.0.1 - - [15/Jan/2024:10:33:00 +0000] "POST /login HTTP/1.1" 401 128 "-" "Mozilla/5.0"',
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


@pytest.fixture
def client():
    """Create a test client with default configuration."""
    return TestClient(create_app())


def ipc(client, **payload):
    response = client.post("/api/ipc", json=payload)
    assert response.status_code == 200
    return response.json()


class TestQueryAction:
    """Tests for the query action."""

    def test_query_success(self, client, log_file):
        """Test a grouped query returns queryResults."""
        data = ipc(
            client,
            id="req-1",
            action="query",
            logFile=log_file,
            query="SELECT ip, COUNT() AS n FROM logs WHERE status = 401 GROUP BY ip ORDER BY n DESC",
        )

        assert data["id"] == "req-1"
        assert data["success"] is True
        assert "error" not in data
        assert data["data"]["queryResults"] == {
            "count": 2,
            "columns": ["ip", "n"],
            "rows": [["10.0.0.1", 2], ["10.0.0.2", 1]],
        }
        assert data["data"]["skippedRecords"] == 0

    def test_query_with_format(self, client, log_file):
        """Test formatted text is included when a format is requested."""
        data = ipc(
            client,
            id="req-2",
            action="query",
            logFile=log_file,
            query="SELECT url FROM logs WHERE status = 200",
            format="csv",
        )

        assert data["data"]["formatted"] == "url\n/index.html\n"

    def test_query_timestamps_are_iso(self, client, log_file):
        """Test timestamp values serialize as ISO-8601."""
        data = ipc(client, id="r", action="query", logFile=log_file, query="SELECT * FROM logs LIMIT 1")

        results = data["data"]["queryResults"]
        assert results["columns"] == list(RECORD_FIELDS)
        assert results["rows"][0][1] == "2024-01-15T10:30:00+00:00"

    def test_query_parse_error(self, client, log_file):
        """Test a malformed query fails with a positioned message."""
        data = ipc(
            client,
            id="req-3",
            action="query",
            logFile=log_file,
            query="SELECT * FROM logs WHERE (status = 1",
        )

        assert data["success"] is False
        assert "position 25" in data["error"]
        assert "data" not in data

    def test_query_missing_log_file(self, client):
        """Test a missing log file path."""
        data = ipc(client, id="req-4", action="query", query="SELECT * FROM logs")

        assert data["success"] is False
        assert data["error"]

    def test_query_nonexistent_log_file(self, client):
        """Test a log file that does not exist."""
        data = ipc(client, id="req-5", action="query", logFile="/nonexistent.log", query="SELECT * FROM logs")

        assert data["success"] is False
        assert "not found" in data["error"]

    def test_query_missing_query(self, client, log_file):
        """Test a query action without a query."""
        data = ipc(client, id="req-6", action="query", logFile=log_file)

        assert data["success"] is False

    def test_query_unsupported_format(self, client, log_file):
        """Test an unknown output format."""
        data = ipc(client, id="r", action="query", logFile=log_file, query="SELECT * FROM logs", format="xml")

        assert data["success"] is False

    def test_strict_config(self, log_file):
        """Test a strict engine reports evaluation errors."""
        client = TestClient(create_app(EngineConfig(strict=True)))

        data = ipc(client, id="r", action="query", logFile=log_file, query="SELECT HOUR(url) FROM logs")

        assert data["success"] is False
        assert "HOUR" in data["error"]

    def test_generated_id(self, client):
        """Test a request without an id gets one."""
        data = ipc(client, action="getStatus")

        assert data["id"]


class TestPresetActions:
    """Tests for the runPreset and listPresets actions."""

    def test_list_presets(self, client):
        """Test listing built-in presets."""
        data = ipc(client, id="p1", action="listPresets")

        names = [preset["name"] for preset in data["data"]["presets"]]
        assert names == [preset.name for preset in BUILTIN_PRESETS]
        assert set(data["data"]["presets"][0]) == {"name", "description", "category", "query"}

    def test_run_preset(self, client, log_file):
        """Test running a built-in preset."""
        data = ipc(client, id="p2", action="runPreset", logFile=log_file, preset="simple-status-codes")

        assert data["success"] is True
        assert data["data"]["queryResults"]["rows"] == [[401, 3], [200, 1]]

    def test_run_unknown_preset(self, client, log_file):
        """Test an unknown preset name."""
        data = ipc(client, id="p3", action="runPreset", logFile=log_file, preset="missing")

        assert data["success"] is False
        assert "missing" in data["error"]

    def test_custom_presets_file(self, temp_dir, log_file):
        """Test presets loaded from the configured YAML file."""
        presets_path = temp_dir / "presets.yaml"
        presets_path.write_text(
            "presets:\n"
            "  - name: logins\n"
            "    query: SELECT COUNT() AS n FROM logs WHERE url = '/login'\n"
        )
        client = TestClient(create_app(EngineConfig(presets_file=str(presets_path))))

        data = ipc(client, id="p4", action="runPreset", logFile=log_file, preset="logins")

        assert data["data"]["queryResults"]["rows"] == [[3]]


class TestValidateAndStatus:
    """Tests for the validate and getStatus actions."""

    def test_validate_valid_query(self, client):
        """Test a valid query."""
        data = ipc(client, id="v1", action="validate", query="SELECT * FROM logs")

        assert data["success"] is True
        assert data["data"]["validation"] == {"valid": True}

    def test_validate_invalid_query(self, client):
        """Test an invalid query reports message and position."""
        data = ipc(client, id="v2", action="validate", query="SELECT * FROM logs WHERE (status = 1")

        validation = data["data"]["validation"]
        assert validation["valid"] is False
        assert validation["position"] == 25
        assert validation["message"]

    def test_get_status(self, client):
        """Test the status string."""
        data = ipc(client, id="s1", action="getStatus")

        assert data["success"] is True
        assert "SLAQ Engine" in data["data"]["status"]

    def test_invalid_action(self, client):
        """Test an unknown action."""
        data = ipc(client, id="x", action="shutdown")

        assert data["success"] is False
        assert "invalid action" in data["error"]

    def test_missing_action(self, client):
        """Test the request model requires an action."""
        response = client.post("/api/ipc", json={"id": "x"})

        assert response.status_code == 422


class TestSchemaAndHealth:
    """Tests for the schema and health endpoints."""

    def test_schema(self, client):
        """Test the language description."""
        response = client.get("/api/schema")

        assert response.status_code == 200
        data = response.json()
        assert data["fields"] == list(RECORD_FIELDS)
        assert "COUNT" in data["aggregate_functions"]
        assert "IS_PRIVATE_IP" in data["scalar_functions"]
        assert "IN_RANGE" in data["operators"]
        assert "BETWEEN" in data["operators"]

    def test_health(self, client):
        """Test health check."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
