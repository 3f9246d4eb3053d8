from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from .database import Base


class RoadmapItem(Base):
    __tablename__ = "roadmap_item"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("project.id"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(50), default="considering")  # considering, planned, in_progress, shipped
    source_type = Column(String(50), default="manual")  # manual, ai_extracted
    source_feedback_id = Column(Integer, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'project_id': self.project_id,
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'source_type': self.source_type,
            'source_feedback_id': self.source_feedback_id,
        }

    def __repr__(self):
        return f"<RoadmapItem(id={self.id}, status='{self.status}')>"
