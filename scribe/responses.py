"""
Scribe API Response Utilities
Error taxonomy, standardized envelopes and exception handlers
"""
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from .logging_config import api_logger


def _timestamp() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


# ============================================================
# SUCCESS RESPONSES
# ============================================================

def success(data: Any = None, message: Optional[str] = None, meta: Optional[Dict] = None) -> Dict:
    """Create success response"""
    response = {
        "ok": True,
        "timestamp": _timestamp(),
    }
    if data is not None:
        response["data"] = data
    if message:
        response["message"] = message
    if meta:
        response["meta"] = meta
    return response


def paginated(items: List, total: int, page: int = 1, per_page: int = 20) -> Dict:
    """Paginated list response"""
    return {
        "ok": True,
        "data": items,
        "pagination": {
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": (total + per_page - 1) // per_page,
            "has_next": page * per_page < total,
            "has_prev": page > 1,
        },
        "timestamp": _timestamp(),
    }


# ============================================================
# ERROR TAXONOMY
# ============================================================

class ApiException(HTTPException):
    """API exception with a machine-readable error code"""

    status_code_default = 500
    error_code_default = "INTERNAL_ERROR"
    message_default = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict] = None,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.error_code = error_code or self.error_code_default
        self.details = details
        super().__init__(
            status_code=status_code or self.status_code_default,
            detail=message or self.message_default,
            headers=headers,
        )


class ValidationError(ApiException):
    """Malformed input. `details["errors"]` carries per-field messages."""
    status_code_default = 400
    error_code_default = "VALIDATION_ERROR"
    message_default = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, details={"errors": [{"field": field, "message": message}]})


class ConflictError(ApiException):
    status_code_default = 400
    error_code_default = "CONFLICT"
    message_default = "Resource already exists"


class Unauthorized(ApiException):
    status_code_default = 401
    error_code_default = "UNAUTHORIZED"
    message_default = "Authentication required"

    def __init__(self, message: Optional[str] = None, **kwargs):
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(message, **kwargs)


class Forbidden(ApiException):
    status_code_default = 403
    error_code_default = "FORBIDDEN"
    message_default = "Forbidden"


class NotFound(ApiException):
    status_code_default = 404
    error_code_default = "NOT_FOUND"
    message_default = "Not found"


class InternalError(ApiException):
    pass


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

def _error_body(message: str, error_code: str, details: Optional[Dict] = None) -> Dict:
    return {
        "ok": False,
        "error": message,
        "error_code": error_code,
        "details": details,
        "timestamp": _timestamp(),
    }


async def api_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render ApiException and plain HTTPException as JSON errors"""
    if isinstance(exc, ApiException):
        log = api_logger.error if exc.status_code >= 500 else api_logger.warning
        log(
            f"API Error: {exc.detail}",
            status_code=exc.status_code,
            error_code=exc.error_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.detail, exc.error_code, exc.details),
            headers=exc.headers,
        )

    if isinstance(exc, StarletteHTTPException):
        api_logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(str(exc.detail), f"HTTP_{exc.status_code}"),
            headers=getattr(exc, "headers", None),
        )

    api_logger.error(
        f"Unexpected error: {exc}",
        error=exc,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=500,
        content=_error_body("An unexpected error occurred", "INTERNAL_ERROR"),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request parsing failures as 400 with field-level errors"""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or None, "message": err.get("msg")})

    api_logger.warning(
        "Request validation failed",
        path=request.url.path,
        errors=errors,
    )
    return JSONResponse(
        status_code=400,
        content=_error_body("Validation failed", "VALIDATION_ERROR", {"errors": errors}),
    )
