"""Turn model: one immutable message inside a thread."""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import relationship
from .threads import Base

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
USER_INPUT_TIER = "user-input"


class Turn(Base):
    """
    SQLAlchemy model for conversation turns.
    
    Rows are only ever inserted. Within a thread they are ordered by
    ``(created_at, id)``.
    """
    __tablename__ = "turns"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(16), nullable=False)  # "user" or "assistant"
    content = Column(Text, nullable=False)
    persona = Column(String(32), nullable=False)
    tier_label = Column(String(128), nullable=False)  # Producing tier, or "user-input"
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    
    thread = relationship("Thread", back_populates="turns")
    
    __table_args__ = (
        Index("ix_turns_thread_created", "thread_id", "created_at", "id"),
    )
