"""Automation trigger schemas."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class TriggerRequest(BaseModel):
    """Manual enrollment of an existing contact, by id or by email."""

    contact_id: Optional[str] = None
    email: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class TriggerResponse(BaseModel):
    success: bool = True
    message: str
    job_id: str
    automation_id: str
    contact_id: str
