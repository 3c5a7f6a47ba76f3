"""Project model for provisioned apps."""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Uuid, func
from sqlalchemy.orm import relationship
import uuid
from wisp.constants import ProjectStatus
from wisp.database import Base


class Project(Base):
    """Provisioned app: repository, hosting project, DNS record and status."""
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False, unique=True, index=True)  # DNS-safe slug
    display_name = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    private = Column(Boolean, default=False, nullable=False)

    # Provisioned resources (forward-only once written)
    hosting_project_id = Column(String, nullable=True)
    dns_record_id = Column(String, nullable=True)
    custom_domain = Column(String, nullable=True)

    status = Column(String(20), default=ProjectStatus.CREATING, nullable=False, index=True)  # creating|deploying|deployed|failed|deleted
    status_message = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    mobile_screenshot = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_updated = Column(DateTime(timezone=True), server_default=func.now())
    deployed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="projects")
