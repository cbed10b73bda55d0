"""
Structured Validation Error Utilities

Standardized 422 responses for malformed identifiers so callers can tell a
bad request apart from a domain rejection (400) or a missing record (404).

Error Response Format:
{
    "error": "missing_parameter" | "invalid_parameter",
    "parameter": "agency_id",
    "message": "agency_id is required"
}
"""

import uuid
from typing import Optional, Any

from fastapi import HTTPException, status


class ValidationErrorResponse:
    """Structured validation error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        The received value is echoed back truncated to 100 characters.
        """
        response = {
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]
        return response


def raise_missing_parameter(parameter: str, message: Optional[str] = None):
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.missing_parameter(parameter, message)
    )


def raise_invalid_parameter(parameter: str, message: str, value: Optional[Any] = None):
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.invalid_parameter(parameter, message, value)
    )


def validate_required_uuid(value: Optional[str], parameter: str) -> uuid.UUID:
    """
    Validate that a required UUID parameter is present and well formed.

    Returns:
        The parsed UUID

    Raises:
        HTTPException: 422 with a structured body
    """
    if not value:
        raise_missing_parameter(parameter)

    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise_invalid_parameter(
            parameter,
            f"{parameter} must be a valid UUID format",
            value
        )


def validate_optional_uuid(value: Optional[str], parameter: str) -> Optional[uuid.UUID]:
    if not value:
        return None

    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise_invalid_parameter(
            parameter,
            f"{parameter} must be a valid UUID format",
            value
        )
