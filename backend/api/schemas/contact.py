"""Contact schemas returned by the ingest and webhook endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ContactResponse(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    status: str
    source: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IngestResponse(BaseModel):
    success: bool = True
    contact: ContactResponse
    created: bool
    triggered: int = Field(description="Queue jobs created by this call")


class HookResponse(BaseModel):
    success: bool = True
    contact_id: str
    queued: bool
    job_id: Optional[str] = None
