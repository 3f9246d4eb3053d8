from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base

MESSAGE_STATUSES = ("pending", "processing", "processed", "skipped", "error")


class RawMessage(Base):
    __tablename__ = "raw_message"

    id = Column(Integer, primary_key=True, index=True)
    integration_source_id = Column(Integer, ForeignKey("integration_source.id"), nullable=False)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)
    external_thread_id = Column(String(255), nullable=True)
    external_user_id = Column(String(255), nullable=True)
    external_user_name = Column(String(255), nullable=True)
    external_user_email = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)
    channel_name = Column(String(255), nullable=True)
    source_metadata = Column("metadata", JSON, nullable=True)
    status = Column(String(50), default="pending", nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    # Successful extraction output, reused when the job is replayed
    extraction_payload = Column(JSON, nullable=True)
    message_timestamp = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    integration_source = relationship("IntegrationSource", back_populates="raw_messages")
    feedback = relationship("ExtractedFeedback", back_populates="raw_message")

    __table_args__ = (
        UniqueConstraint("integration_source_id", "external_id", name="uq_raw_message_source_external"),
    )

    def __repr__(self):
        return f"<RawMessage(id={self.id}, external_id='{self.external_id}', status='{self.status}')>"
