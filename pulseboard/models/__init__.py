from .database import Base, engine, SessionLocal, init_db
from .project import Project
from .integration_source import IntegrationSource
from .raw_message import RawMessage
from .feedback import ExtractedFeedback
from .cluster import FeedbackCluster
from .roadmap_item import RoadmapItem
from .processing_log import AIProcessingLog

__all__ = [
    'Base', 'engine', 'SessionLocal', 'init_db',
    'Project', 'IntegrationSource', 'RawMessage', 'ExtractedFeedback',
    'FeedbackCluster', 'RoadmapItem', 'AIProcessingLog'
]
