"""
Pydantic models for the scoutchat API.
This module defines the request and response schemas used by the HTTP API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., min_length=1, description="User message for the agent")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    narration: List[str] = Field(default_factory=list, description="Messages shown during the turn")
    plan: List[Dict[str, Any]] = Field(default_factory=list, description="Final plan snapshot")
    session_id: str


class ClearResponse(BaseModel):
    """Response to a session clear."""

    session_id: str
    status: str = "cleared"
