"""
Celery tasks driving scheduled publication.

Both tasks re-enter the lifecycle controller with a fresh session, so a
task never depends on state from the request that enqueued it. The cache
client is shared by every task in a worker process and closed when the
process shuts down.
"""
from contextlib import contextmanager
from typing import Iterator, List, Optional

from celery.signals import worker_process_init, worker_process_shutdown
from sqlalchemy.exc import OperationalError

from ..config import get_settings
from ..database import SessionLocal
from ..logging_config import timed, worker_logger
from ..responses import InternalError
from ..services.cache import Cache, NullCache, RedisCache
from ..services.posts import PostLifecycleController
from ..services.scheduler import CeleryJobScheduler, JobName, JobScheduler
from .celery_app import celery_app


def build_cache() -> Cache:
    settings = get_settings()
    if not settings.cache_enabled:
        return NullCache()
    return RedisCache.from_url(settings.redis_url)


_worker_cache: Optional[Cache] = None


def worker_cache() -> Cache:
    global _worker_cache
    if _worker_cache is None:
        _worker_cache = build_cache()
    return _worker_cache


@worker_process_init.connect
def reset_worker_cache(**kwargs) -> None:
    # A forked child must not reuse the parent's connection pool
    global _worker_cache
    _worker_cache = None


@worker_process_shutdown.connect
def close_worker_cache(**kwargs) -> None:
    global _worker_cache
    cache, _worker_cache = _worker_cache, None
    close = getattr(cache, "close", None)
    if close is not None:
        close()
        worker_logger.info("Worker cache closed")


def build_job_scheduler() -> JobScheduler:
    return CeleryJobScheduler(celery_app)


@contextmanager
def lifecycle_controller() -> Iterator[PostLifecycleController]:
    db = SessionLocal()
    try:
        yield PostLifecycleController(db, worker_cache(), build_job_scheduler())
    finally:
        db.close()


@celery_app.task(
    name=JobName.PUBLISH_POST.value,
    bind=True,
    autoretry_for=(InternalError, OperationalError),
    retry_backoff=True,
    retry_backoff_max=300,
    max_retries=5,
)
@timed(worker_logger)
def publish_post(self, post_id: int) -> bool:
    worker_logger.info("Processing publish job", job_id=self.request.id, post_id=post_id)
    with lifecycle_controller() as controller:
        return controller.publish_due_post(post_id)


@celery_app.task(name=JobName.CHECK_SCHEDULED.value, ignore_result=True)
@timed(worker_logger)
def check_scheduled() -> List[int]:
    with lifecycle_controller() as controller:
        return controller.sweep_scheduled()
