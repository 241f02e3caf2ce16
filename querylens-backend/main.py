"""
QueryLens API
=============

HTTP surface over the extraction layer.

Endpoints:
- POST /api/parse         SQL (+ optional DDL) -> QueryFact
- POST /api/schema        DDL -> SchemaModel
- POST /api/validate      SQL -> syntax check only
- GET  /api/capabilities  grammar subset supported by the parser binding
- GET  /health

Status codes:
- 400: empty input or a syntax error (caller errors)
- 413: SQL / DDL longer than QUERYLENS_MAX_SQL_LENGTH
- 500: anything else

Author: QueryLens Team
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import configure_logging, get_settings
from parse_errors import QueryLensError, SQLSyntaxError
from schema_parser import parse_ddl, parse_schema
from sql_ast import PARSER_CAPABILITIES
from sql_extractor import parse_sql, validate_sql

logger = logging.getLogger(__name__)

VERSION = "1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging on startup."""
    configure_logging()
    settings = get_settings()
    logger.info("=" * 60)
    logger.info(f"QueryLens API v{VERSION} ready")
    logger.info(f"Parser: {PARSER_CAPABILITIES.parser} (dialect: {settings.sql_dialect})")
    logger.info(f"Max nesting depth: {settings.max_depth}, max input: {settings.max_sql_length} chars")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down QueryLens API...")


app = FastAPI(
    title="QueryLens API",
    description="Extracts tables, columns, joins and filters from SQL and validates them against a DDL schema",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ParseRequest(BaseModel):
    sql: Optional[str] = None
    ddl: Optional[str] = None


class SchemaRequest(BaseModel):
    ddl: Optional[str] = None


class ValidateRequest(BaseModel):
    sql: Optional[str] = None


# =============================================================================
# HELPERS
# =============================================================================

def _failure(status_code: int, error: str, **extra: Any) -> JSONResponse:
    # {success, error} bodies rather than HTTPException's {detail}; clients read `error`
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


def _too_long(text: Optional[str], what: str) -> Optional[JSONResponse]:
    limit = get_settings().max_sql_length
    if text is not None and len(text) > limit:
        logger.warning(f"Rejected {what}: {len(text)} chars exceeds limit of {limit}")
        return _failure(413, f"{what} exceeds the maximum length of {limit} characters")
    return None


# =============================================================================
# ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    return {
        "message": f"QueryLens API v{VERSION}",
        "version": VERSION,
        "endpoints": ["/api/parse", "/api/schema", "/api/validate", "/api/capabilities", "/health"],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": VERSION,
        "parser": PARSER_CAPABILITIES.parser,
        "dialect": get_settings().sql_dialect,
    }


@app.get("/api/capabilities")
async def capabilities():
    return PARSER_CAPABILITIES.to_dict()


@app.post("/api/parse")
def parse_endpoint(request: ParseRequest):
    """
    Parse a SQL query and return its tables, columns, joins and filters.

    When `ddl` is supplied the columns are validated against it
    (isValid / dataType).
    """
    if request.sql is None:
        return _failure(400, "SQL query is required")
    rejected = _too_long(request.sql, "SQL query") or _too_long(request.ddl, "DDL")
    if rejected is not None:
        return rejected

    try:
        schema = parse_schema(request.ddl) if request.ddl and request.ddl.strip() else None
        fact = parse_sql(request.sql, schema=schema)
    except SQLSyntaxError as e:
        logger.info(f"Parse rejected: {e}")
        return _failure(400, str(e), parseErrors=[e.to_dict()])
    except QueryLensError as e:
        logger.info(f"Parse rejected: {e}")
        return _failure(400, str(e))
    except Exception as e:
        logger.error(f"Parse failed: {str(e)}", exc_info=True)
        return _failure(500, f"Internal error: {str(e)}")

    body: Dict[str, Any] = {"success": True, "data": fact.to_dict()}
    warnings: List[str] = [w.message for w in fact.warnings]
    if warnings:
        body["warnings"] = warnings
    return body


@app.post("/api/schema")
def schema_endpoint(request: SchemaRequest):
    """Parse DDL into the schema model used for validation."""
    if request.ddl is None:
        return _failure(400, "DDL is required")
    rejected = _too_long(request.ddl, "DDL")
    if rejected is not None:
        return rejected

    try:
        result = parse_ddl(request.ddl)
    except Exception as e:
        logger.error(f"Schema parse failed: {str(e)}", exc_info=True)
        return _failure(500, f"Internal error: {str(e)}")

    if not result.success:
        return JSONResponse(status_code=400, content=result.to_dict())
    return result.to_dict()


@app.post("/api/validate")
def validate_endpoint(request: ValidateRequest):
    """Syntax-only check."""
    if request.sql is None:
        return JSONResponse(status_code=400, content={"valid": False, "error": "SQL query is required"})
    if len(request.sql) > get_settings().max_sql_length:
        return JSONResponse(status_code=413, content={"valid": False, "error": "SQL query is too long"})
    return validate_sql(request.sql)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
