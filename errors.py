"""
Typed failures raised by the progression engines
and their translation into consistent JSON error responses
"""

import logging
from typing import Dict, Any, Optional

from flask import jsonify

logger = logging.getLogger('Errors')

# Standard error codes for consistent API responses
ERROR_CODES = {
    "NOT_FOUND": "Resource not found",
    "NOT_PARTICIPANT": "User is not participating",
    "CONFLICT": "Resource already exists",
    "INVALID_STATE": "Operation not allowed in the current state",
    "COMPETITION_FULL": "Competition is full",
    "CHALLENGE_FULL": "Challenge is full",
    "CHALLENGE_CLOSED": "Challenge is not active",
    "INSUFFICIENT_FUNDS": "Insufficient coins",
    "VALIDATION_ERROR": "Request validation failed",
    "UNAUTHORIZED": "Authentication required",
    "FORBIDDEN": "Not authorized",
    "SERVER_ERROR": "Internal server error",
}


class EngineError(Exception):
    """Base class for every failure an engine operation can raise"""
    error_code = "SERVER_ERROR"
    status_code = 500

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or ERROR_CODES[self.error_code]
        self.details = details
        super().__init__(self.message)


class NotFound(EngineError):
    error_code = "NOT_FOUND"
    status_code = 404


class NotParticipant(NotFound):
    error_code = "NOT_PARTICIPANT"


class Conflict(EngineError):
    error_code = "CONFLICT"
    status_code = 409


class StateError(EngineError):
    error_code = "INVALID_STATE"
    status_code = 409


class CompetitionFull(StateError):
    error_code = "COMPETITION_FULL"


class ChallengeFull(EngineError):
    error_code = "CHALLENGE_FULL"
    status_code = 409


class ChallengeClosed(EngineError):
    error_code = "CHALLENGE_CLOSED"
    status_code = 409


class InsufficientFunds(EngineError):
    error_code = "INSUFFICIENT_FUNDS"
    status_code = 402


class ValidationError(EngineError):
    error_code = "VALIDATION_ERROR"
    status_code = 400


class Unauthorized(EngineError):
    error_code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(EngineError):
    error_code = "FORBIDDEN"
    status_code = 403


def create_error_response(
    error_code: str,
    message: Optional[str] = None,
    details: Optional[Any] = None,
    status_code: int = 500
) -> tuple:
    """
    Create a standardized error response with consistent format.

    Args:
        error_code: One of the standard ERROR_CODES keys
        message: Optional custom message (defaults to standard message)
        details: Optional additional error details
        status_code: HTTP status code

    Returns:
        Tuple of (JSON response, HTTP status code)
    """
    if error_code not in ERROR_CODES:
        logger.warning(f"Unknown error code used: {error_code}")
        error_code = "SERVER_ERROR"

    response_data = {
        "success": False,
        "error_code": error_code,
        "error": message or ERROR_CODES[error_code]
    }
    if details:
        response_data["details"] = details

    if status_code >= 500:
        logger.error(f"API Error [{error_code}]: {response_data['error']} - Status: {status_code}")
    else:
        logger.info(f"API Error [{error_code}]: {response_data['error']} - Status: {status_code}")

    return jsonify(response_data), status_code


def engine_error_response(error: EngineError) -> tuple:
    return create_error_response(error.error_code, error.message, error.details, error.status_code)


def validation_error(message: Optional[str] = None, details: Optional[Any] = None) -> tuple:
    return create_error_response("VALIDATION_ERROR", message, details, status_code=400)
