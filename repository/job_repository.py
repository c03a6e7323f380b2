# repository/job_repository.py
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional
from model.job import Job


class JobRepository(ABC):
    """
    Mapping from job id to Job. The queue is the only writer; swapping in a
    durable backend must not change anything above this interface.
    """

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def put(self, job: Job) -> None: ...

    @abstractmethod
    def delete(self, job_id: str) -> bool: ...

    @abstractmethod
    def all(self) -> Iterable[Job]: ...

    @abstractmethod
    def count(self) -> int: ...


class InMemoryJobRepository(JobRepository):
    """Process-local, not durable. Jobs vanish on restart."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}

    def get(self, job_id: str) -> Optional[Job]:
        if not job_id:
            return None
        return self._jobs.get(job_id)

    def put(self, job: Job) -> None:
        self._jobs[job.id] = job

    def delete(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def all(self) -> Iterable[Job]:
        return list(self._jobs.values())

    def count(self) -> int:
        return len(self._jobs)
