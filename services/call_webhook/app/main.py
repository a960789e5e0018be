"""
Call Webhook Service - NoCall call events into Salesforce.
Accepts call events (native event shape or pre-mapped direct shape), normalizes
them and upserts the call plus its attributions through the Salesforce REST API.
The service keeps no state between requests.
"""
import json
import logging
import os
from typing import Any, Callable, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from .adapters.base import CRMClient, SalesforceRemoteError
from .adapters.salesforce_client import DEFAULT_LOGIN_URL, SalesforceAdapter
from .errors import WebhookInputError
from .normalizer import normalize_payload
from .schemas import ErrorResponse, UpsertResponse
from .upsert import CallUpserter

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


class PrettyJSONResponse(JSONResponse):
    """JSON response indented for humans reading webhook logs."""

    def render(self, content: Any) -> bytes:
        return json.dumps(content, indent=2, ensure_ascii=False, default=str).encode("utf-8")


def error_response(
    status_code: int,
    error: str,
    detail: Any = None,
    operation: Optional[str] = None,
    salesforce_status: Optional[int] = None,
) -> PrettyJSONResponse:
    body = ErrorResponse(
        error=error,
        detail=detail,
        operation=operation,
        salesforceStatus=salesforce_status,
    )
    return PrettyJSONResponse(body.model_dump(exclude_none=True), status_code=status_code)


def salesforce_status_to_http(status: Any) -> int:
    """Mirror 4xx/5xx, turn redirects into 502, collapse anything else to 500."""
    try:
        numeric = int(status)
    except (TypeError, ValueError):
        return 500

    if 400 <= numeric < 600:
        return numeric
    if 300 <= numeric < 400:
        return 502
    return 500


# =============================================================================
# CRM Adapter Factory
# =============================================================================

def get_crm_factory() -> Callable[[], CRMClient]:
    """
    Dependency returning the adapter factory.
    Every request builds its own adapter, so access tokens are never shared.
    """
    return SalesforceAdapter


def salesforce_configured() -> bool:
    return all(
        os.getenv(name)
        for name in (
            "SALESFORCE_CLIENT_ID",
            "SALESFORCE_CLIENT_SECRET",
            "SALESFORCE_USERNAME",
            "SALESFORCE_PASSWORD",
        )
    )


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Call Webhook Service",
    description="Normalizes call events and upserts them into Salesforce",
    version=VERSION,
)

# Prometheus metrics
Instrumentator().instrument(app).expose(app)


@app.on_event("startup")
async def startup_event():
    """Log Salesforce configuration status on startup."""
    login_url = os.getenv("SALESFORCE_LOGIN_URL", DEFAULT_LOGIN_URL)
    if salesforce_configured():
        logger.info(f"🏢 Salesforce login host: {login_url}")
    else:
        logger.warning("⚠️ Salesforce credentials not set — webhook requests will fail")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"❌ Unhandled error on {request.method} {request.url.path}")
    return error_response(500, "Unexpected error", detail=str(exc))


# =============================================================================
# Health
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check with Salesforce configuration status."""
    return {
        "status": "ok",
        "service": "call-webhook",
        "version": VERSION,
        "salesforce_configured": salesforce_configured(),
    }


# =============================================================================
# Webhook
# =============================================================================

@app.post("/")
async def receive_call_event(
    request: Request,
    crm_factory: Callable[[], CRMClient] = Depends(get_crm_factory),
):
    """
    Upsert one call event.
    201 when a new call was inserted, 200 when an existing one was updated.
    """
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except ValueError as e:
        return error_response(400, "Invalid JSON payload", detail=str(e), operation="insert")

    upserter: Optional[CallUpserter] = None
    try:
        normalized = normalize_payload(payload)
        upserter = CallUpserter(crm_factory())
        result = await upserter.upsert(
            normalized.call,
            normalized.attributions,
            require_match_key=normalized.requires_match_key,
        )
        response = UpsertResponse(
            callId=result.call_id,
            attributionIds=result.attribution_ids,
            operation=result.operation,
        )

    except WebhookInputError as e:
        logger.warning(f"⚠️ Rejected call event: {e.error}")
        return error_response(400, e.error, detail=e.detail, operation="insert")

    except SalesforceRemoteError as e:
        operation = upserter.operation if upserter else "insert"
        detail = e.body if e.body is not None else (str(e) or "Salesforce request failed")
        logger.error(f"❌ Salesforce error during {operation} ({e.status}): {detail}")
        return error_response(
            salesforce_status_to_http(e.status),
            "Salesforce error",
            detail=detail,
            operation=operation,
            salesforce_status=e.status,
        )

    except Exception as e:
        operation = upserter.operation if upserter else "insert"
        logger.exception(f"❌ Unexpected error during {operation}")
        return error_response(500, "Unexpected error", detail=str(e), operation=operation)

    status_code = 200 if result.operation == "update" else 201
    return PrettyJSONResponse(response.model_dump(), status_code=status_code)
