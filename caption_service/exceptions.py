"""
    Centralized exception handling for the FastAPI application.
"""
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
import logging

from caption_service.settings import settings

log = logging.getLogger(__name__)

class APIException(Exception):
    """Base class for API exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)

class SessionNotFoundException(APIException):
    """Exception for when a session has no upload directory or record."""
    def __init__(self, session_id: str):
        super().__init__(status_code=404, detail=f"Session '{session_id}' not found.")

class FileNotFoundException(APIException):
    """Exception for a missing image, caption or result directory."""
    def __init__(self, detail: str):
        super().__init__(status_code=404, detail=detail)

class JobNotFoundException(APIException):
    """Exception for an unknown caption job."""
    def __init__(self, job_id: str):
        super().__init__(status_code=404, detail=f"Caption job '{job_id}' not found.")

class InvalidRequestException(APIException):
    """Exception for malformed or incomplete requests."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class InvalidImageException(APIException):
    """Exception for invalid image files."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class StorageException(APIException):
    """Exception for session store I/O failures."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

class DynamoDBException(APIException):
    """Exception for DynamoDB failures."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

async def api_exception_handler(request: Request, exc: APIException):
    """Handles API exceptions."""
    if exc.status_code >= 500:
        log.error(f"API Exception: {exc.detail}", exc_info=exc)
    else:
        log.warning(f"API Exception: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    """Handles FastAPI HTTP exceptions."""
    log.error(f"HTTP Exception: {exc.detail}", exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def generic_exception_handler(request: Request, exc: Exception):
    """Handles all other exceptions."""
    log.error(f"Unhandled Exception: {str(exc)}", exc_info=exc)
    content = {"detail": "An unexpected error occurred."}
    if settings.debug:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

def add_exception_handlers(app):
    """Adds exception handlers to the FastAPI app."""
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
