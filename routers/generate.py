"""Generation router for the Explainer Relay."""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from models import ErrorKind, GenerationError, QuotaStatus
from services import GenerationOrchestrator
from utils import get_logger, utc_now

router = APIRouter(prefix="/api", tags=["generation"])
logger = get_logger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Dependency to get the orchestrator from application state."""
    return request.app.state.orchestrator  # type: ignore[no-any-return]


def caller_key_for(request: Request, forwarded_header: str = "X-Forwarded-For") -> str:
    """Coarse caller identity: first forwarded address, else the peer address."""
    forwarded: Optional[str] = request.headers.get(forwarded_header)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def error_response(error: GenerationError, quota: QuotaStatus) -> JSONResponse:
    """Structured JSON error carrying quota metadata."""
    body = error.to_body()
    body["quota"] = quota.to_body()
    headers = quota.to_headers()
    if error.retry_at is not None:
        retry_after = max(0, int((error.retry_at - utc_now()).total_seconds()))
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(status_code=error.status_code, content=body, headers=headers)


@router.post("/generate")
async def generate(
    request: Request,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Start or continue a generation and stream it back as server-sent events."""
    try:
        payload = await request.json()
    except ValueError:
        error = GenerationError.of(ErrorKind.INVALID_INPUT, "Request body must be valid JSON")
        return error_response(error, orchestrator.quota_gate.untouched())

    caller_key = caller_key_for(request, orchestrator.config.forwarded_for_header)
    admission = await orchestrator.admit(payload, caller_key)
    if not admission.result.ok:
        return error_response(admission.result.error, admission.quota)

    events = orchestrator.stream(admission.result.value)
    # Runs after the body finishes or the caller disconnects.
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={**admission.quota.to_headers(), **STREAM_HEADERS},
        background=BackgroundTask(events.aclose),
    )


@router.api_route(
    "/generate",
    methods=["GET", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def generate_method_not_allowed(request: Request) -> JSONResponse:
    """Structured 405 for verbs other than POST."""
    logger.info("Rejected generation call with wrong verb", method=request.method)
    return JSONResponse(
        status_code=405,
        content={"error": "Method not allowed", "type": "MethodNotAllowed", "status": 405},
        headers={"Allow": "POST"},
    )
