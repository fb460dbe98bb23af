"""
Post lifecycle services: store, revision log, cache and job scheduling.
"""
from .cache import Cache, InMemoryCache, NullCache, RedisCache
from .scheduler import (
    CeleryJobScheduler,
    InMemoryJobScheduler,
    JobName,
    JobScheduler,
    ScheduledJob,
)
from .posts import Actor, PostLifecycleController

__all__ = [
    "Actor",
    "Cache",
    "CeleryJobScheduler",
    "InMemoryCache",
    "InMemoryJobScheduler",
    "JobName",
    "JobScheduler",
    "NullCache",
    "PostLifecycleController",
    "RedisCache",
    "ScheduledJob",
]
