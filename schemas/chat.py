"""Schemas for chat responses."""
from pydantic import BaseModel, Field
from uuid import UUID


class ChatResponse(BaseModel):
    """Buffered chat reply."""
    reply: str
    thread_id: UUID
    tier: str = Field(description="Label of the generation tier that produced the reply")
    is_new_thread: bool = False
