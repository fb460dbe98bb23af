"""
FastAPI dependency providers for the post lifecycle collaborators.

The cache and job scheduler are built once in the application lifespan
and kept on ``app.state``; tests replace these providers through
``app.dependency_overrides``.
"""
from pathlib import Path

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .services.cache import Cache
from .services.posts import PostLifecycleController
from .services.scheduler import JobScheduler


def get_cache(request: Request) -> Cache:
    return request.app.state.cache


def get_job_scheduler(request: Request) -> JobScheduler:
    return request.app.state.job_scheduler


def get_upload_dir() -> Path:
    return Path(get_settings().upload_dir)


def get_post_controller(
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
    scheduler: JobScheduler = Depends(get_job_scheduler),
) -> PostLifecycleController:
    return PostLifecycleController(db, cache, scheduler)
