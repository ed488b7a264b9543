"""Authenticated caller schemas."""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class JWTClaims(BaseModel):
    """Decoded bearer token claims."""

    sub: str
    email: Optional[str] = None
    role: Optional[str] = None
    exp: int
    iat: Optional[int] = None
    iss: Optional[str] = None
    aud: Optional[Union[str, List[str]]] = None


class CurrentUser(BaseModel):
    """Caller identity resolved from a verified token."""

    id: str = Field(..., description="Identity provider subject")
    email: Optional[str] = Field(None, description="User email address")
    role: str = Field(default="user", description="User role")
    metadata: Dict[str, Any] = Field(default_factory=dict)
