"""
Delayed-job scheduling for post publication.

Two job kinds share one queue:

- ``publish-post {post_id}``: run the publish transition for one post,
  no earlier than its ``scheduled_for``.
- ``check-scheduled {}``: recurring sweep that re-enqueues an immediate
  ``publish-post`` for every overdue SCHEDULED post.

Delivery is at-least-once and nothing deduplicates ``publish-post`` jobs;
the publish handler is idempotent, so duplicates only cost a lookup.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Protocol

from celery import Celery

from ..database import utc_now


class JobName(str, enum.Enum):
    PUBLISH_POST = "publish-post"
    CHECK_SCHEDULED = "check-scheduled"


@dataclass
class ScheduledJob:
    job_id: str
    job_name: JobName
    payload: Dict[str, Any]
    delay_seconds: float = 0.0
    not_before: datetime = field(default_factory=utc_now)
    recurrence_seconds: Optional[int] = None


class JobScheduler(Protocol):
    def enqueue_publish(self, post_id: int, delay_seconds: float = 0.0) -> str:
        """Enqueue ``publish-post`` for ``post_id``; return the job id."""
        ...


def publish_delay(scheduled_for: datetime, now: datetime) -> float:
    """Seconds from ``now`` until ``scheduled_for``; non-positive means due."""
    return (scheduled_for - now).total_seconds()


class CeleryJobScheduler:
    """Enqueue jobs on a Celery broker by task name."""

    def __init__(self, app: Celery):
        self.app = app

    def enqueue_publish(self, post_id: int, delay_seconds: float = 0.0) -> str:
        countdown = delay_seconds if delay_seconds > 0 else None
        result = self.app.send_task(
            JobName.PUBLISH_POST.value,
            args=[post_id],
            countdown=countdown,
        )
        return result.id


class InMemoryJobScheduler:
    """Records jobs in memory and runs them on demand against a clock."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._lock = Lock()
        self.jobs: List[ScheduledJob] = []
        self.fail_with: Optional[Exception] = None

    def enqueue_publish(self, post_id: int, delay_seconds: float = 0.0) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        delay = max(delay_seconds, 0.0)
        job = ScheduledJob(
            job_id=uuid.uuid4().hex,
            job_name=JobName.PUBLISH_POST,
            payload={"post_id": post_id},
            delay_seconds=delay,
            not_before=self._clock() + timedelta(seconds=delay),
        )
        with self._lock:
            self.jobs.append(job)
        return job.job_id

    def pending_for(self, post_id: int) -> List[ScheduledJob]:
        return [j for j in self.jobs if j.payload.get("post_id") == post_id]

    def due(self, now: Optional[datetime] = None) -> List[ScheduledJob]:
        now = now or self._clock()
        return [j for j in self.jobs if j.not_before <= now]

    def run_due(self, handlers: Dict[JobName, Callable[..., Any]], now: Optional[datetime] = None) -> int:
        """Pop and execute every due job; returns how many ran."""
        with self._lock:
            ready = self.due(now)
            self.jobs = [j for j in self.jobs if j not in ready]
        for job in ready:
            handlers[job.job_name](**job.payload)
        return len(ready)

    def clear(self) -> None:
        with self._lock:
            self.jobs.clear()
