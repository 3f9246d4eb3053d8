from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


class IntegrationSource(Base):
    __tablename__ = "integration_source"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # slack, intercom, app_store
    name = Column(String(200), nullable=False)
    status = Column(String(50), default="active")  # active, paused, error
    config = Column(JSON, nullable=False, default=dict)
    access_token = Column(Text, nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    project = relationship("Project", back_populates="integration_sources")
    raw_messages = relationship("RawMessage", back_populates="integration_source")

    def __repr__(self):
        return f"<IntegrationSource(id={self.id}, type='{self.type}', status='{self.status}')>"
