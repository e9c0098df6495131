from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from name_screening.domain.model import Job, JobStatus, JobType


# 1. Result DTOs (Data Transfer Objects)
@dataclass(frozen=True)
class JobSnapshot:
    """호출자에게 전달되는 Job의 읽기 전용 복사본"""

    id: str
    type: JobType
    payload: dict[str, Any]
    priority: int
    status: JobStatus
    created_at: datetime
    progress: int
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    result: dict[str, Any] | None = None
    execution_time_ms: float | None = None

    @classmethod
    def from_job(cls, job: Job) -> JobSnapshot:
        return cls(
            id=job.id,
            type=job.type,
            payload=copy.deepcopy(job.payload),
            priority=job.priority,
            status=job.status,
            created_at=job.created_at,
            progress=job.progress,
            scheduled_for=job.scheduled_for,
            started_at=job.started_at,
            completed_at=job.completed_at,
            error=job.error,
            result=copy.deepcopy(job.result),
            execution_time_ms=job.execution_time_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority,
            "status": self.status.value,
            "progress": self.progress,
            "created_at": self.created_at.isoformat(),
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "result": self.result,
            "execution_time_ms": self.execution_time_ms,
        }


@dataclass(frozen=True)
class QueueStats:
    total: int
    queued: int
    scheduled: int
    running: int
    completed: int
    failed: int
    cancelled: int
    avg_exec_ms: float
    utilization_pct: float
    max_concurrent_jobs: int


class HealthStatus(Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class QueueHealth:
    status: HealthStatus
    stats: QueueStats
    issues: list[str] = field(default_factory=list)
