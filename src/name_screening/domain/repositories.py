from abc import ABC, abstractmethod
from collections.abc import Iterable

from name_screening.domain.model import Job


class JobRepository(ABC):
    """Job 테이블의 추상 인터페이스. JobQueue만이 이 저장소에 쓰기를 수행합니다."""

    def add(self, job: Job) -> None:
        self._add(job)

    def get(self, job_id: str) -> Job | None:
        return self._get(job_id)

    def remove(self, job_id: str) -> None:
        self._remove(job_id)

    def all(self) -> list[Job]:
        return list(self._all())

    def __len__(self) -> int:
        return len(self.all())

    @abstractmethod
    def _add(self, job: Job) -> None:
        raise NotImplementedError

    @abstractmethod
    def _get(self, job_id: str) -> Job | None:
        raise NotImplementedError

    @abstractmethod
    def _remove(self, job_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def _all(self) -> Iterable[Job]:
        raise NotImplementedError
