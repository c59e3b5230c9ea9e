"""
Common Pydantic schemas for API responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from scoopify.utils.dates import utcnow


class APIResponse(BaseModel):
    """Base API response model."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class SuccessResponse(APIResponse):
    """Success response model."""
    data: Optional[Any] = None


class ErrorResponse(APIResponse):
    """Error response model."""
    success: bool = False
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class BatchItemSchema(BaseModel):
    subject_id: Any
    outcome: str
    entity_id: Optional[int] = None
    error: Optional[str] = None
    detail: Optional[str] = None


class BatchResponse(APIResponse):
    """Result of a cron-triggered batch job."""
    job: str
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    items: List[BatchItemSchema] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result) -> "BatchResponse":
        data = result.to_dict()
        return cls(
            message=f"{result.job} finished",
            job=data["job"],
            total=data["total"],
            created=data["created"],
            updated=data["updated"],
            skipped=data["skipped"],
            failed=data["failed"],
            items=[BatchItemSchema(**item) for item in data["items"]],
        )


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=utcnow)
    version: str = "0.1.0"
    services: Dict[str, str] = Field(default_factory=dict)


def create_success_response(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Create a standardized success response."""
    return SuccessResponse(data=data, message=message).model_dump(mode="json")


def create_error_response(
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Create a standardized error response."""
    return ErrorResponse(
        error_code=error_code,
        message=message,
        details=details or {}
    ).model_dump(mode="json")
