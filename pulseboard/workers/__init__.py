from .ingest_worker import IngestWorker
from .nlu_worker import NLUWorker
from .cluster_worker import ClusterWorker
from .actions_worker import ActionsWorker
from .sync_worker import SyncWorker

__all__ = ['IngestWorker', 'NLUWorker', 'ClusterWorker', 'ActionsWorker', 'SyncWorker']
