"""Pydantic schemas for the v1 notifications API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ReconnectRequest(BaseModel):
    """Request body for a manual reconnect."""

    channel_name: Optional[str] = Field(
        default=None,
        description="Channel to reconnect. Omit to reconnect every channel that is not live.",
    )


class ReconnectResponse(BaseModel):
    reconnected: List[str]


class StreamMessage(BaseModel):
    """Frame sent to WebSocket stream clients."""

    type: Literal["subscribed", "degraded", "event"]
    channel: str
    data: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
