"""Pydantic schemas for thread-related responses."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict
from uuid import UUID


class ThreadResponse(BaseModel):
    """Schema for thread responses."""
    id: UUID
    user_id: str
    title: str
    title_finalized: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    
    model_config = ConfigDict(from_attributes=True)


class TurnResponse(BaseModel):
    """Schema for a stored turn."""
    role: str
    content: str
    persona: str
    tier_label: str
    created_at: datetime
    
    model_config = ConfigDict(from_attributes=True)
