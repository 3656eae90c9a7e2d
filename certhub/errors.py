"""
Domain errors and their HTTP mapping.

Services raise these; `register_exception_handlers` turns them into JSON
responses so routes don't have to translate each one.
"""
from typing import Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


log = structlog.get_logger(__name__)


class CertHubError(Exception):
    status_code = 400
    kind = "error"

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or {}


class ValidationError(CertHubError):
    status_code = 422
    kind = "validation_error"

    def __init__(self, errors: Dict[str, str], message: str = "Invalid input"):
        super().__init__(message, errors)


class NotFoundError(CertHubError):
    status_code = 404
    kind = "not_found"


class UniquenessConflictError(CertHubError):
    status_code = 409
    kind = "uniqueness_conflict"


class InvalidStateError(CertHubError):
    status_code = 409
    kind = "invalid_state"


class NotRenewableError(InvalidStateError):
    kind = "not_renewable"


class ConcurrencyConflictError(CertHubError):
    status_code = 409
    kind = "concurrency_conflict"

    def __init__(self, message: str = "Record was modified by another request; reload and retry"):
        super().__init__(message)


class StorageError(CertHubError):
    """Blob storage failure. Details are logged, never returned to the client."""
    status_code = 500
    kind = "operation_failed"


def _request_id(request: Request) -> Optional[str]:
    return getattr(getattr(request, "state", None), "request_id", None)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CertHubError)
    async def _handle_domain_error(request: Request, exc: CertHubError):
        request_id = _request_id(request)
        if isinstance(exc, StorageError):
            log.error("storage_failure", error=exc.message, request_id=request_id)
            body = {"detail": "Operation failed", "type": exc.kind, "request_id": request_id}
        else:
            body = {"detail": exc.message, "type": exc.kind, "request_id": request_id}
            if exc.errors:
                body["errors"] = exc.errors
        headers = {"X-Request-ID": request_id} if request_id else None
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)
