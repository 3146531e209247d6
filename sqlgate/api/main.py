"""FastAPI application exposing query execution and catalog browsing."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from sqlgate.core.cache import configure_cache
from sqlgate.core.config import get_settings
from sqlgate.core.db import dispose_engines
from sqlgate.core.errors import ErrorKind
from sqlgate.core.logging import (
    configure_logging,
    get_logger,
    log_structured,
    reset_request_id,
    set_request_id,
)
from sqlgate.executor.params import QueryVariable
from sqlgate.executor.service import QueryOutcome, QueryService

configure_logging()
logger = get_logger(__name__)

service: QueryService | None = None

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CAST: 400,
    ErrorKind.VISIBILITY: 403,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.ENGINE: 502,
}


def get_service() -> QueryService:
    global service
    if service is None:
        settings = get_settings()
        configure_cache(settings.cache)
        service = QueryService.from_settings(settings)
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Close pooled database connections
    dispose_engines()
    logger.info("sqlgate API shut down")


app = FastAPI(title="sqlgate: safe read-only SQL execution", lifespan=lifespan)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request_token = set_request_id(request_id)
    request.state.request_id = request_id

    started = perf_counter()
    try:
        response: Response = await call_next(request)
    except Exception as exc:
        elapsed_ms = round((perf_counter() - started) * 1000, 2)
        log_structured(
            logger,
            logging.ERROR,
            "request_failed",
            path=request.url.path,
            method=request.method,
            elapsed_ms=elapsed_ms,
            error=str(exc),
        )
        reset_request_id(request_token)
        raise

    elapsed_ms = round((perf_counter() - started) * 1000, 2)
    log_structured(
        logger,
        logging.INFO,
        "request_completed",
        path=request.url.path,
        method=request.method,
        status=response.status_code,
        elapsed_ms=elapsed_ms,
    )
    reset_request_id(request_token)

    response.headers["x-request-id"] = request_id
    return response


class SessionOptions(BaseModel):
    repo: Optional[str] = Field(None, description="Data repo name; the configured default when omitted.")
    search_path: Optional[str] = Field(None, description="Comma-separated schema search path (Postgres).")
    read_only: Optional[bool] = None
    statement_timeout_ms: Optional[int] = Field(None, gt=0)
    timeout_ms: Optional[int] = Field(None, gt=0)
    cache_ttl_ms: Optional[int] = Field(None, gt=0, description="Cache the result for this long.")
    refresh_cache: bool = False


class VariableModel(BaseModel):
    name: str
    type: Optional[str] = None
    default: Optional[str] = None
    widget: str = "input"
    label: Optional[str] = None
    static_options: List[str] = Field(default_factory=list)
    options_query: Optional[str] = None


class TemplateQueryRequest(SessionOptions):
    statement: str = Field(..., description="SQL with {{var}} placeholders.")
    variables: List[VariableModel] = Field(default_factory=list)
    values: Dict[str, Any] = Field(default_factory=dict, description="Supplied variable values.")


class RawSQLRequest(SessionOptions):
    sql: str = Field(..., description="Final SQL in the engine's placeholder syntax.")
    params: List[Any] = Field(default_factory=list)


class QueryResponse(BaseModel):
    columns: List[str]
    rows: List[List[Any]]
    num_rows: int
    duration_ms: int
    command: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    cache: Optional[str] = None


class RelationModel(BaseModel):
    schema_name: Optional[str] = None
    table: str


def _raise_for(outcome: QueryOutcome) -> None:
    if outcome.ok:
        return
    error = outcome.error
    status = _STATUS_BY_KIND.get(error.kind, 500)
    log_structured(logger, logging.WARNING, "query_rejected", kind=error.kind.value, status=status)
    raise HTTPException(status_code=status, detail=error.as_dict())


def _query_response(outcome: QueryOutcome) -> QueryResponse:
    _raise_for(outcome)
    payload = outcome.result.as_dict()
    return QueryResponse(**payload, cache=outcome.cache)


def _session_kwargs(request: SessionOptions) -> Dict[str, Any]:
    return {
        "repo": request.repo,
        "search_path": request.search_path,
        "read_only": request.read_only,
        "statement_timeout_ms": request.statement_timeout_ms,
        "timeout_ms": request.timeout_ms,
        "cache_ttl_ms": request.cache_ttl_ms,
        "refresh_cache": request.refresh_cache,
    }


@app.post("/queries/run", response_model=QueryResponse)
def run_template_query(request: TemplateQueryRequest) -> QueryResponse:
    logger.info("Received template query request")
    variables = [QueryVariable.from_mapping(variable.model_dump()) for variable in request.variables]
    outcome = get_service().run_query(request.statement, variables, request.values, **_session_kwargs(request))
    return _query_response(outcome)


@app.post("/sql/run", response_model=QueryResponse)
def run_raw_sql(request: RawSQLRequest) -> QueryResponse:
    logger.info("Received raw SQL request")
    outcome = get_service().run_sql(request.sql, request.params, **_session_kwargs(request))
    return _query_response(outcome)


@app.get("/repos/{repo}/schemas", response_model=List[str])
def list_schemas(repo: str) -> List[str]:
    outcome = get_service().list_schemas(repo=repo)
    _raise_for(outcome)
    return list(outcome.result)


@app.get("/repos/{repo}/tables", response_model=List[RelationModel])
def list_tables(
    repo: str,
    schema: Optional[List[str]] = Query(None, description="Schemas to list; engine defaults when omitted."),
    include_views: bool = False,
) -> List[RelationModel]:
    outcome = get_service().list_tables(repo=repo, schemas=schema, include_views=include_views)
    _raise_for(outcome)
    return [RelationModel(schema_name=relation.schema, table=relation.table) for relation in outcome.result]
