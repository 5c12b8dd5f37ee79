"""
Error responder for the chat endpoint.

Unexpected failures are reported to the caller with one fixed JSON body so
that no exception detail leaks out; the detail goes to the log instead.
"""

import logging
from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Failed to process request"


def error_response() -> JSONResponse:
    """Build the uniform 500 response: ``{"error": "Failed to process request"}``."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": GENERIC_ERROR_MESSAGE},
    )


def report_failure(
    exc: BaseException,
    request: Optional[Request] = None,
    message: str = "Error processing chat request",
) -> JSONResponse:
    """
    Log a failure for operators and return the generic error response.

    Args:
        exc: Exception that was caught
        request: Request being served, for log context
        message: Log message prefix

    Returns:
        JSONResponse: Status 500 with the generic error body
    """
    extra = {"exception_type": type(exc).__name__}
    if request is not None:
        extra["path"] = request.url.path
        extra["method"] = request.method

    logger.error(f"{message}: {exc}", extra=extra, exc_info=exc)
    return error_response()
