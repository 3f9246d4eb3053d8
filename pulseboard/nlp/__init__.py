from .prefilter import should_process
from .extractor import FeedbackExtractor, OpenAIChatClient
from .embedder import TextEmbedder, OpenAIEmbeddingClient, SentenceTransformerClient

__all__ = [
    'should_process', 'FeedbackExtractor', 'OpenAIChatClient',
    'TextEmbedder', 'OpenAIEmbeddingClient', 'SentenceTransformerClient'
]
