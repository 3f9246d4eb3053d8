from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, LargeBinary
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base

CLUSTER_REVIEW_STATUSES = ("pending", "reviewed", "dismissed")


class FeedbackCluster(Base):
    __tablename__ = "feedback_cluster"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    centroid_embedding = Column(LargeBinary, nullable=True)  # float64 bytes
    member_count = Column(Integer, default=1, nullable=False)
    total_mentions = Column(Integer, default=1, nullable=False)
    review_status = Column(String(50), default="pending", nullable=False)
    linked_item_id = Column(Integer, ForeignKey("roadmap_item.id"), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    feedback = relationship("ExtractedFeedback", back_populates="cluster")

    # Every UPDATE/DELETE checks the version it read, so racing writers fail loudly
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'project_id': self.project_id,
            'title': self.title,
            'description': self.description,
            'member_count': self.member_count,
            'total_mentions': self.total_mentions,
            'review_status': self.review_status,
            'linked_item_id': self.linked_item_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<FeedbackCluster(id={self.id}, member_count={self.member_count}, review_status='{self.review_status}')>"
