from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import List, Optional
from uuid import UUID

from services.personas import Persona, DEFAULT_PERSONA


class TranscriptEntry(BaseModel):
    role: str = Field(..., max_length=32, description="user or assistant; anything else is treated as assistant")
    text: str = Field(default="", validation_alias=AliasChoices("text", "content"))


class ChatRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=8000)
    persona: Persona = Field(default=DEFAULT_PERSONA, description="Persona mode for this reply")
    thread_id: Optional[UUID] = Field(default=None, description="Existing thread; omit to start a new one")
    transcript: Optional[List[TranscriptEntry]] = Field(
        default=None, max_length=200, description="Prior turns, honored only for guest callers"
    )

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt must not be blank")
        return value
