"""
Persistence gateway for clone runs
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import CloneRun


class RunRepository(ABC):
    """Abstract store for runs. Implementations receive snapshots, never live objects."""

    @abstractmethod
    def get(self, run_id: str) -> Optional[CloneRun]:
        pass

    @abstractmethod
    def put(self, run: CloneRun) -> None:
        pass

    @abstractmethod
    def delete(self, run_id: str) -> bool:
        pass

    @abstractmethod
    def list(self) -> List[CloneRun]:
        pass

    def upsert(self, run: CloneRun) -> None:
        self.put(run)


class InMemoryRunRepository(RunRepository):
    """Thread-safe dict-backed store; several pipelines may share one instance."""

    def __init__(self):
        self._runs: Dict[str, CloneRun] = {}
        self._lock = threading.Lock()

    def get(self, run_id: str) -> Optional[CloneRun]:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run else None

    def put(self, run: CloneRun) -> None:
        snapshot = run.model_copy(deep=True)
        with self._lock:
            self._runs[run.id] = snapshot

    def delete(self, run_id: str) -> bool:
        with self._lock:
            return self._runs.pop(run_id, None) is not None

    def list(self) -> List[CloneRun]:
        with self._lock:
            runs = [run.model_copy(deep=True) for run in self._runs.values()]
        return sorted(runs, key=lambda r: r.created_at, reverse=True)
