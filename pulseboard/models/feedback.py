from sqlalchemy import Column, Integer, String, Text, DateTime, Float, ForeignKey, LargeBinary, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base

FEEDBACK_TYPES = ("feature_request", "bug_report", "complaint", "praise", "question")
SENTIMENTS = ("positive", "negative", "neutral", "mixed")
URGENCIES = ("low", "normal", "high", "critical")
REVIEW_STATUSES = ("pending", "approved", "rejected", "merged")


class ExtractedFeedback(Base):
    __tablename__ = "extracted_feedback"

    id = Column(Integer, primary_key=True, index=True)
    raw_message_id = Column(Integer, ForeignKey("raw_message.id"), nullable=False)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    item_index = Column(Integer, nullable=False)  # position in the extraction response
    type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    quote = Column(Text, nullable=True)
    confidence = Column(Float, nullable=False)
    sentiment = Column(String(20), nullable=True)
    urgency = Column(String(20), nullable=True)
    embedding = Column(LargeBinary, nullable=True)  # float64 bytes
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    review_status = Column(String(50), default="pending", nullable=False)
    cluster_id = Column(Integer, ForeignKey("feedback_cluster.id"), nullable=True, index=True)
    created_item_id = Column(Integer, ForeignKey("roadmap_item.id"), nullable=True)
    merged_into_item_id = Column(Integer, ForeignKey("roadmap_item.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    raw_message = relationship("RawMessage", back_populates="feedback")
    cluster = relationship("FeedbackCluster", back_populates="feedback")

    __table_args__ = (
        # Replaying a message's item steps must never create a second row
        UniqueConstraint("raw_message_id", "item_index", name="uq_feedback_message_item"),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'raw_message_id': self.raw_message_id,
            'project_id': self.project_id,
            'type': self.type,
            'title': self.title,
            'description': self.description,
            'quote': self.quote,
            'confidence': self.confidence,
            'sentiment': self.sentiment,
            'urgency': self.urgency,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'review_status': self.review_status,
            'cluster_id': self.cluster_id,
            'created_item_id': self.created_item_id,
            'merged_into_item_id': self.merged_into_item_id,
            'has_embedding': self.embedding is not None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ExtractedFeedback(id={self.id}, type='{self.type}', cluster_id={self.cluster_id})>"
