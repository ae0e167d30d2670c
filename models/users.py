"""User model for authentication."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, func
from .threads import Base


class User(Base):
    """
    SQLAlchemy model for users.
    
    Stores registered identities. Threads reference them by ``str(User.id)``.
    """
    __tablename__ = "users"
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
