from fastapi import HTTPException
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class StatementAnalyzerError(Exception):
    """Base class for every error surfaced to the user"""
    status_code = 500


class ConfigurationError(StatementAnalyzerError):
    """Exception raised when required configuration is missing or invalid"""
    status_code = 503


class PDFProcessingError(StatementAnalyzerError):
    """Exception raised when the source document cannot be loaded"""
    status_code = 400


class PDFPasswordError(PDFProcessingError):
    """Exception raised when PDF password is required but not provided"""
    pass


class ExtractionError(StatementAnalyzerError):
    """Exception raised when a chunk extraction call fails"""
    status_code = 502

    def __init__(self, message: str, chunk_num: int = None):
        super().__init__(message)
        self.chunk_num = chunk_num


class EmptyResponseError(ExtractionError):
    """Exception raised when the extraction service returns no text"""
    pass


class ResponseParseError(ExtractionError):
    """Exception raised when the extraction response is not valid JSON for the schema"""

    GENERIC_MESSAGE = "Could not process the extraction response."

    def __init__(self, chunk_num: int = None, detail: str = None):
        super().__init__(self.GENERIC_MESSAGE, chunk_num)
        self.detail = detail


class SessionNotFound(StatementAnalyzerError):
    status_code = 404


class TransactionNotFound(StatementAnalyzerError):
    status_code = 404


class InvalidStateTransition(StatementAnalyzerError):
    status_code = 409


async def http_exception_handler(request, exc: HTTPException) -> JSONResponse:
    """
    Global exception handler for HTTP exceptions
    """
    return JSONResponse(
        content={
            "status": "error",
            "message": str(exc.detail),
            "data": None
        },
        status_code=exc.status_code
    )


def analyzer_error_response(exc: StatementAnalyzerError, data: dict = None) -> JSONResponse:
    status = "password_required" if isinstance(exc, PDFPasswordError) else "error"
    return JSONResponse(
        content={
            "status": status,
            "message": str(exc),
            "data": data
        },
        status_code=exc.status_code
    )


async def analyzer_exception_handler(request, exc: StatementAnalyzerError) -> JSONResponse:
    """
    Exception handler for the analyzer's own error taxonomy
    """
    return analyzer_error_response(exc)


async def general_exception_handler(request, exc) -> JSONResponse:
    """
    Global exception handler for all other exceptions
    """
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        content={
            "status": "error",
            "message": "Internal server error",
            "data": None
        },
        status_code=500
    )
