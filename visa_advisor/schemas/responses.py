"""Common response envelope and RFC 7807 error body."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    timestamp: datetime
    request_id: str
    api_version: str = "v1"


class ApiResponse(BaseModel):
    """Envelope returned by every versioned endpoint."""

    status: bool = Field(..., description="Whether the operation succeeded")
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    meta: ResponseMeta


class ErrorDetail(BaseModel):
    """Problem details (RFC 7807) plus a machine-readable error code."""

    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime
    code: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)
