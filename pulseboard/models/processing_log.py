from sqlalchemy import Column, Integer, String, Text, DateTime, Float, ForeignKey, Boolean
from sqlalchemy.sql import func
from .database import Base


class AIProcessingLog(Base):
    """Append-only record of one model invocation."""
    __tablename__ = "ai_processing_log"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    raw_message_id = Column(Integer, ForeignKey("raw_message.id"), nullable=True, index=True)
    operation = Column(String(50), nullable=False)  # extract_feedback, generate_embedding
    model = Column(String(100), nullable=False)
    input_tokens = Column(Integer, default=0)
    output_tokens = Column(Integer, default=0)
    cost_cents = Column(Float, default=0.0)
    latency_ms = Column(Integer, default=0)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<AIProcessingLog(operation='{self.operation}', success={self.success})>"
