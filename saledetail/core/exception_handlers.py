import uuid
import logging
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from saledetail.core.exceptions import DomainValidationError, SaleDetailNotFoundError

log = logging.getLogger("exception_handlers")


# Generate a clean request id for every response
def _rid():
    """Generates a unique request ID for tracing."""
    return uuid.uuid4().hex


def _error_body(code: str, message, details=None):
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error, "request_id": _rid()}


# ----------- Exception Handlers (called by FastAPI) -----------

def http_exception_handler(request: Request, exc: HTTPException):
    """Handles exceptions raised by HTTPException (e.g., 404, 409)."""
    return JSONResponse(status_code=exc.status_code, content=_error_body("http_error", exc.detail))


def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handles Pydantic validation errors (422 Unprocessable Entity)."""
    return JSONResponse(
        status_code=422,
        content=_error_body("validation_error", "Invalid input data", exc.errors()),
    )


def domain_validation_exception_handler(request: Request, exc: DomainValidationError):
    """Business-rule violations found by the service layer (400)."""
    return JSONResponse(status_code=400, content=_error_body("validation_error", str(exc), exc.errors))


def not_found_exception_handler(request: Request, exc: SaleDetailNotFoundError):
    return JSONResponse(status_code=404, content=_error_body("not_found", str(exc)))


def generic_exception_handler(request: Request, exc: Exception):
    """Handles all unhandled exceptions (500 Internal Server Error)."""
    # Log the full traceback for debugging purposes
    log.error(f"Unhandled exception on path: {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body("server_error", "Internal Server Error"))


# ----------- Registration Function -----------

def setup_exception_handlers(app: FastAPI):
    """Registers all custom exception handlers with the FastAPI application."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DomainValidationError, domain_validation_exception_handler)
    app.add_exception_handler(SaleDetailNotFoundError, not_found_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    return app
