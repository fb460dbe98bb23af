"""
Request bodies for the posts API.

Field lengths are enforced by the lifecycle controller so that HTTP and
worker callers share one set of rules; these models only parse types.
"""
from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field

from ..models.post import PostStatus


class PostCreate(BaseModel):
    title: str
    content: str
    status: Optional[PostStatus] = None
    scheduled_for: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("scheduled_for", "scheduledFor"),
    )


class PostUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    status: Optional[PostStatus] = None
    scheduled_for: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("scheduled_for", "scheduledFor"),
    )


class PostSchedule(BaseModel):
    scheduled_for: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("scheduled_for", "scheduledFor"),
    )
