"""Thread model for conversation management."""
from sqlalchemy import Boolean, Column, String, DateTime, Uuid, func
from sqlalchemy.orm import declarative_base, relationship
from uuid import uuid4

Base = declarative_base()

GUEST_OWNER = "guest"
PLACEHOLDER_TITLE = "New Chat"


class Thread(Base):
    """
    SQLAlchemy model for conversation threads.
    
    Each thread represents a conversation between one identity and the persona.
    Its turns live in the ``turns`` table; the title stays a placeholder until
    the background summarizer finalizes it exactly once.
    """
    __tablename__ = "threads"
    
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4, index=True)
    user_id = Column(String, nullable=False, index=True)  # Registered user id or "guest"
    title = Column(String(255), nullable=False, default=PLACEHOLDER_TITLE)
    title_finalized = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    turns = relationship(
        "Turn",
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Turn.created_at",
    )
