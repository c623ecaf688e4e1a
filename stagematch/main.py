"""
Stagematch - internship company search API
Companies are looked up live at the marketplace, cached for five minutes
"""
import logging
from typing import Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from stagematch.models import EducationTrack
from stagematch.orchestrator import get_orchestrator
from stagematch.responses import (
    CODE_RATE_LIMITED,
    CODE_SOURCE_UNAVAILABLE,
    CODE_VALIDATION,
    SearchResult,
    error_response,
)
from stagematch.schemas import SearchRequest

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("stagematch.api")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Stagematch"

app = FastAPI(
    title=APP_NAME,
    description="Find internship companies per education track and location",
    version=APP_VERSION,
)

STATUS_BY_CODE = {
    CODE_VALIDATION: 422,
    CODE_RATE_LIMITED: 429,
    CODE_SOURCE_UNAVAILABLE: 503,
}


def _to_response(result: SearchResult) -> JSONResponse:
    """Map a search result onto an HTTP status and body."""
    if result.is_ok:
        return JSONResponse(status_code=200, content=result.to_dict())

    headers = {}
    if result.code == CODE_RATE_LIMITED:
        headers["Retry-After"] = str(result.retry_after_seconds or 1)
    return JSONResponse(
        status_code=STATUS_BY_CODE.get(result.code, 500),
        content=result.to_dict(),
        headers=headers,
    )


def _client_ip(req: Request) -> Optional[str]:
    return req.client.host if req and req.client else None


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed requests in the search error envelope."""
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return _to_response(
        error_response(code=CODE_VALIDATION, message="Invalid search criteria", errors=errors)
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "source": get_orchestrator().fetcher.provider_name}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


# =============================================================================
# SEARCH API
# =============================================================================

@app.get("/api/search/tracks")
def list_tracks():
    """List the education tracks a search can target."""
    return {"tracks": [track.value for track in EducationTrack]}


@app.get("/api/search/stats")
def search_stats():
    """Get cache, coalescer and rate limiter statistics."""
    return get_orchestrator().get_stats()


@app.post("/api/search")
def api_search(
    request: SearchRequest,
    req: Request,
    x_session_id: Optional[str] = Header(None),
):
    """
    Company search endpoint.

    Returns one of:
    - {status: "ok", source: "fresh"|"stale", results: [...], fetchedAt}
    - {status: "error", code, message, retryAfterSeconds?}

    Rate limited to 10 searches/minute per client and 5 concurrent
    searches per session.
    """
    result = get_orchestrator().search(
        {
            "education": request.education,
            "location": request.location,
            "radiusKm": request.radius_km,
        },
        client_id=_client_ip(req),
        session_id=request.session_id or x_session_id,
    )
    return _to_response(result)


@app.get("/api/search")
def api_search_get(
    education: str = Query(..., description="Education track"),
    location: str = Query(..., description="Town or postcode"),
    radius_km: int = Query(..., alias="radiusKm", description="Search radius in km"),
    session_id: Optional[str] = Query(None, alias="sessionId", description="Session ID"),
    req: Request = None,
    x_session_id: Optional[str] = Header(None),
):
    """
    GET version of search endpoint for simple queries.

    Example: /api/search?education=Medewerker%20Hovenier&location=Amsterdam&radiusKm=25
    """
    result = get_orchestrator().search(
        {"education": education, "location": location, "radiusKm": radius_km},
        client_id=_client_ip(req),
        session_id=session_id or x_session_id,
    )
    return _to_response(result)
