"""
FastAPI application for the SLAQ engine.

Provides endpoints for:
- The IPC request/response envelope (query, runPreset, listPresets,
  validate, getStatus)
- Describing the query language (fields, functions, operators)
- Health checks
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict, Field

from .config import EngineConfig
from .engine import ExecutionEngine
from .errors import QueryError
from .formatting import FORMATS, format_result
from .loader import load_records
from .models import AGGREGATE_FUNCTIONS, RECORD_FIELDS, SCALAR_FUNCTIONS, Operator
from .parser import parse_query, validate_query
from .presets import CATEGORIES, QueryPreset, get_preset, load_presets

logger = logging.getLogger(__name__)

ACTIONS = ("query", "runPreset", "listPresets", "validate", "getStatus")

ERR_INVALID_ACTION = "invalid action"
ERR_QUERY_FAILED = "query execution failed"
ERR_PRESET_FAILED = "preset operation failed"


# Pydantic models for API requests/responses


class IPCRequest(BaseModel):
    """A request envelope from a client."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Request ID echoed in the response")
    action: str = Field(..., description="One of: " + ", ".join(ACTIONS))
    log_file: Optional[str] = Field(None, alias="logFile", description="Path to the log file to query")
    query: Optional[str] = Field(None, description="SLAQ query string")
    preset: Optional[str] = Field(None, description="Preset name for runPreset")
    format: Optional[str] = Field(None, description="Also render results as table, csv or json")


class Preset(BaseModel):
    """A named query preset."""
    name: str
    description: str
    category: str
    query: str


class ValidationResult(BaseModel):
    """Outcome of validating a query without running it."""
    valid: bool
    message: Optional[str] = None
    position: Optional[int] = None


class IPCData(BaseModel):
    """Payload of a successful response."""
    model_config = ConfigDict(populate_by_name=True)

    query_results: Optional[Dict[str, Any]] = Field(None, alias="queryResults")
    formatted: Optional[str] = None
    skipped_records: Optional[int] = Field(None, alias="skippedRecords")
    execution_time_ms: Optional[float] = Field(None, alias="executionTimeMs")
    presets: Optional[List[Preset]] = None
    validation: Optional[ValidationResult] = None
    status: Optional[str] = None


class IPCResponse(BaseModel):
    """A response envelope to a client."""
    id: str
    success: bool
    data: Optional[IPCData] = None
    error: Optional[str] = None


class SchemaResponse(BaseModel):
    """Description of the query language."""
    fields: List[str]
    aggregate_functions: List[str]
    scalar_functions: List[str]
    operators: List[str]
    formats: List[str]
    preset_categories: Dict[str, str]


def _preset_model(preset: QueryPreset) -> Preset:
    return Preset(**preset.to_dict())


def create_app(config: Optional[EngineConfig] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Optional EngineConfig (defaults when omitted)

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="SLAQ Engine API",
        description="Query web-server access logs with a SQL-like language",
        version="1.0.0"
    )

    config = config or EngineConfig()
    presets = load_presets(config.presets_file)
    engine = ExecutionEngine(strict=config.strict)
    stats = {"requests": 0}

    def fail(request: IPCRequest, message: str) -> IPCResponse:
        logger.info(f"Request {request.id} ({request.action}) failed: {message}")
        return IPCResponse(id=request.id, success=False, error=message)

    def run_query(request: IPCRequest, query: str, error_prefix: str) -> IPCResponse:
        if not request.log_file:
            return fail(request, "Missing log file")
        if request.format and request.format.lower() not in FORMATS:
            return fail(request, f"Unsupported format: {request.format}")

        try:
            statement = parse_query(query)
            records = load_records(request.log_file)
            result = engine.execute(statement, records)
        except (QueryError, ValueError) as e:
            return fail(request, f"{error_prefix}: {e}")

        data = IPCData(
            query_results=result.to_dict(),
            skipped_records=result.skipped_records,
            execution_time_ms=result.execution_time_ms,
        )
        if request.format:
            data.formatted = format_result(result, request.format, config.table_max_width)

        return IPCResponse(id=request.id, success=True, data=data)

    # API Routes

    @app.post(
        "/api/ipc",
        response_model=IPCResponse,
        response_model_exclude_none=True,
        response_model_by_alias=True,
    )
    async def handle_request(request: IPCRequest) -> IPCResponse:
        """Dispatch an IPC request envelope.

        Args:
            request: The request envelope

        Returns:
            Response envelope; failures are reported with success=false
        """
        stats["requests"] += 1
        logger.debug(f"Processing request: {request.id} (action: {request.action})")

        if request.action == "query":
            if not request.query:
                return fail(request, "Missing query")
            return run_query(request, request.query, ERR_QUERY_FAILED)

        if request.action == "runPreset":
            if not request.preset:
                return fail(request, "Missing preset name")
            try:
                preset = get_preset(request.preset, presets)
            except ValueError as e:
                return fail(request, f"{ERR_PRESET_FAILED}: {e}")
            return run_query(request, preset.query, ERR_PRESET_FAILED)

        if request.action == "listPresets":
            data = IPCData(presets=[_preset_model(p) for p in presets.values()])
            return IPCResponse(id=request.id, success=True, data=data)

        if request.action == "validate":
            if not request.query:
                return fail(request, "Missing query")
            valid, message, position = validate_query(request.query)
            validation = ValidationResult(valid=valid, message=message, position=position)
            return IPCResponse(id=request.id, success=True, data=IPCData(validation=validation))

        if request.action == "getStatus":
            status = (
                f"SLAQ Engine - running, {len(presets)} presets loaded, "
                f"{stats['requests']} requests served, "
                f"{'strict' if engine.strict else 'lenient'} mode"
            )
            return IPCResponse(id=request.id, success=True, data=IPCData(status=status))

        return fail(request, f"{ERR_INVALID_ACTION}: {request.action}")

    @app.get("/api/schema", response_model=SchemaResponse)
    async def get_schema() -> SchemaResponse:
        """Describe fields, functions and operators of the query language."""
        return SchemaResponse(
            fields=list(RECORD_FIELDS),
            aggregate_functions=list(AGGREGATE_FUNCTIONS),
            scalar_functions=list(SCALAR_FUNCTIONS),
            operators=[op.value for op in Operator] + ["BETWEEN"],
            formats=list(FORMATS),
            preset_categories=dict(CATEGORIES),
        )

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Health check endpoint.

        Returns:
            Health status
        """
        return {"status": "healthy"}

    return app


# Create the app instance
app = create_app()
