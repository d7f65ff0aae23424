"""
FastAPI backend: identity reconciliation REST API.
Run with uvicorn: uvicorn api.main:app --reload
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

# Load .env from repo root (when run from repo root or from Docker)
for path in (
    Path(__file__).resolve().parent.parent.parent / ".env",
    Path.cwd() / ".env",
):
    if path.exists():
        load_dotenv(path)
        break

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from neo4j import GraphDatabase
from pydantic import BaseModel, ConfigDict, StrictStr
from starlette.exceptions import HTTPException as StarletteHTTPException

from reconcile.application import (
    ConsistencyError,
    ContactService,
    InvalidObservation,
    TransientStoreError,
)
from reconcile.infrastructure import (
    InMemoryContactStore,
    Neo4jContactStore,
    ensure_contact_schema,
)

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)

STORE_NEO4J = "neo4j"
STORE_MEMORY = "memory"


def _store_kind() -> str:
    return os.environ.get("CONTACT_STORE", STORE_NEO4J).strip().lower()


def _max_attempts() -> int:
    raw = os.environ.get("IDENTIFY_MAX_ATTEMPTS", "3").strip()
    try:
        return max(1, int(raw))
    except ValueError:
        logger.warning("Ignoring invalid IDENTIFY_MAX_ATTEMPTS=%r", raw)
        return 3


def _get_driver():
    uri = os.environ.get("NEO4J_URI", "bolt://localhost:7687").strip()
    user = os.environ.get("NEO4J_USER", "neo4j").strip()
    password = os.environ.get("NEO4J_PASSWORD", "password").strip()
    return GraphDatabase.driver(uri, auth=(user, password))


def _get_cached_driver(app: FastAPI):
    if getattr(app.state, "driver", None) is None:
        app.state.driver = _get_driver()
    return app.state.driver


def get_service(app: FastAPI) -> ContactService:
    service = getattr(app.state, "service", None)
    if service is None:
        if _store_kind() == STORE_MEMORY:
            store = InMemoryContactStore()
        else:
            store = Neo4jContactStore(_get_cached_driver(app))
        service = ContactService(store, max_attempts=_max_attempts())
        app.state.service = service
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.driver = None
    app.state.service = None
    try:
        if _store_kind() == STORE_NEO4J:
            app.state.driver = _get_driver()
            ensure_contact_schema(app.state.driver)
        get_service(app)
        logger.info("Identity reconciliation service ready (store=%s)", _store_kind())
        yield
    finally:
        if getattr(app.state, "driver", None) is not None:
            logger.info("Closing Neo4j driver")
            app.state.driver.close()


app = FastAPI(title="Identity Reconciliation API", lifespan=lifespan)


# --- Error handlers ---


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = errors[0]["loc"][-1] if errors and errors[0].get("loc") else None
    if field == "email":
        message = "Email must be a string"
    elif field == "phoneNumber":
        message = "Phone number must be a string"
    else:
        message = "Request body must be a JSON object"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"error": "Endpoint not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error: %s", exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- REST: health ---


@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# --- REST: identify ---


class IdentifyBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: StrictStr | None = None
    phoneNumber: StrictStr | None = None


@app.post("/identify")
def identify(body: IdentifyBody, request: Request):
    if not body.email and not body.phoneNumber:
        return JSONResponse(
            status_code=400,
            content={"error": "At least one of email or phoneNumber must be provided"},
        )
    service = get_service(request.app)
    try:
        consolidated = service.identify(body.email, body.phoneNumber)
    except InvalidObservation as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except TransientStoreError:
        logger.exception("Store unavailable in /identify")
        return JSONResponse(
            status_code=503, content={"error": "Service temporarily unavailable"}
        )
    except ConsistencyError:
        logger.error("Consistency violation in /identify")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    return consolidated.to_response()
