"""
Publication point for trained model snapshots.

Readers call current() once per operation and work against that snapshot;
a retrain builds its snapshot elsewhere and publish() swaps the reference.
The store is process-local: one active model per process.
"""

import logging
import threading
from datetime import datetime
from typing import Optional, Dict, Any

from ..training.ml_trainer import ModelSnapshot

logger = logging.getLogger(__name__)


class ModelStore:

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot: Optional[ModelSnapshot] = None
        self._version = 0
        self._published_at: Optional[datetime] = None

    def current(self) -> Optional[ModelSnapshot]:
        with self._lock:
            return self._snapshot

    def next_version(self) -> int:
        with self._lock:
            self._version += 1
            return self._version

    def publish(self, snapshot: ModelSnapshot) -> bool:
        """Swap in a snapshot; an older version than the published one is rejected"""
        with self._lock:
            if self._snapshot is not None and snapshot.version < self._snapshot.version:
                logger.warning(
                    f"Refusing to publish model v{snapshot.version}; "
                    f"v{self._snapshot.version} is already live"
                )
                return False
            self._snapshot = snapshot
            self._published_at = datetime.now()

        logger.info(f"Published model v{snapshot.version}")
        return True

    @property
    def is_trained(self) -> bool:
        return self.current() is not None

    def status(self) -> Dict[str, Any]:
        snapshot = self.current()
        if snapshot is None:
            return {
                "trained": False,
                "last_trained_at": None,
                "property_count": 0,
                "cluster_count": 0,
                "vocabulary_size": 0,
                "model_version": None,
            }
        return {
            "trained": True,
            "last_trained_at": snapshot.trained_at.isoformat(),
            "property_count": snapshot.property_count,
            "cluster_count": snapshot.cluster_count,
            "vocabulary_size": snapshot.vectorizer.vocabulary_size,
            "model_version": snapshot.version,
        }
