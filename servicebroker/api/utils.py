import logging
from typing import Any, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from servicebroker.services.errors import BrokerException
from servicebroker.services.instances import Outcome

OUTCOME_STATUS = {
    Outcome.CREATED: 201,
    Outcome.ALREADY_EXISTS: 200,
    Outcome.DELETED: 200,
    Outcome.CONFLICT: 409,
    Outcome.NOT_FOUND: 410,
    Outcome.STORE_FAILURE: 500,
}

logger = logging.getLogger(__name__)


def outcome_response(outcome: Outcome, body: Optional[dict[str, Any]] = None) -> Response:
    """Render an outcome; 409 and 500 responses never carry a body."""
    status = OUTCOME_STATUS[outcome]
    if body is None or outcome in (Outcome.CONFLICT, Outcome.STORE_FAILURE):
        return Response(status_code=status)
    return JSONResponse(body, status_code=status)


def request_context(request: Request, body: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    return {
        "method": request.method,
        "path": request.url.path,
        "path_params": dict(request.path_params),
        "body": body,
    }


def _exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error for path=%s: %s",
        request.url.path,
        exc,
        exc_info=exc,
        extra={"request": request_context(request), "error": str(exc)},
    )
    return Response(status_code=500)


def register_exception_handlers(app):
    app.exception_handler(BrokerException)(_exception_handler)
    app.exception_handler(Exception)(_exception_handler)
