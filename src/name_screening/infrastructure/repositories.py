from collections.abc import Iterable
from typing import override

from name_screening.domain.model import Job
from name_screening.domain.repositories import JobRepository


class InMemoryJobRepository(JobRepository):
    """프로세스 메모리에만 존재하는 Job 테이블. 재시작하면 모든 Job이 사라집니다."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    @override
    def _add(self, job: Job) -> None:
        self._jobs[job.id] = job

    @override
    def _get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    @override
    def _remove(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    @override
    def _all(self) -> Iterable[Job]:
        return self._jobs.values()
