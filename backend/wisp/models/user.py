"""User model for project owners."""
from sqlalchemy import Column, String, DateTime, Uuid, func
from sqlalchemy.orm import relationship
import uuid
from wisp.database import Base


class User(Base):
    """Project owner model."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    projects = relationship("Project", back_populates="user")
