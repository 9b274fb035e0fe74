"""
Response envelope shared by every JSON endpoint.

Success: ``{"success": true, "data": ..., "message": ...}``
Failure: ``{"success": false, "error": {"error_type", "message", "details"}}``
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Successful response envelope."""

    success: bool = True
    data: T | None = None
    message: str | None = None


class ErrorBody(BaseModel):
    error_type: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Failure envelope rendered by the API exception handlers."""

    success: bool = False
    error: ErrorBody


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""

    status: str = Field(default="healthy", description="Service status")
    version: str = Field(description="API version")
    database: str = Field(default="connected", description="Database connection status")
    active_jobs: int = Field(default=0, description="Bulk jobs currently processing")
