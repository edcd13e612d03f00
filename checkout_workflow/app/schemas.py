"""
API Layer - Request/Response Schemas

Pydantic models for API request and response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CreateSessionRequest(BaseModel):
    machine_id: str = "checkout"
    context: Optional[Dict[str, Any]] = None


class EventRequest(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class SessionRead(BaseModel):
    session_id: str
    machine_id: str
    state: str
    status: str
    context: Dict[str, Any]
    updated_at: datetime
    # Present only while a child machine is running.
    child_state: Optional[str] = None
    # Late results dropped because their state was already left (live sessions only).
    discarded_events: List[str] = Field(default_factory=list)
