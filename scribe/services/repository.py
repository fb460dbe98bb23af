"""
Post Store: SQLAlchemy access to posts with typed query filters.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from functools import singledispatch
from typing import List, Optional, Tuple, Union

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..logging_config import db_logger
from ..models.post import Post, PostStatus
from ..responses import ApiException, InternalError, ValidationError


@dataclass(frozen=True)
class StatusFilter:
    status: PostStatus


@dataclass(frozen=True)
class AuthorFilter:
    author_id: int


@dataclass(frozen=True)
class TextSearch:
    text: str

    def __post_init__(self):
        if not self.text or not self.text.strip():
            raise ValidationError.for_field("search", "Search text must not be empty")


PostFilter = Union[StatusFilter, AuthorFilter, TextSearch]


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    limit: int = 10
    max_limit: int = 100

    def __post_init__(self):
        if self.page < 1:
            raise ValidationError.for_field("page", "page must be >= 1")
        if not 1 <= self.limit <= self.max_limit:
            raise ValidationError.for_field("limit", f"limit must be between 1 and {self.max_limit}")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class PostQuery:
    filters: Tuple[PostFilter, ...] = ()
    pagination: Pagination = field(default_factory=Pagination)
    order_by_published: bool = False

    @property
    def is_search(self) -> bool:
        return any(isinstance(f, TextSearch) for f in self.filters)


@singledispatch
def _clause(f):
    raise TypeError(f"Unsupported post filter: {f!r}")


@_clause.register
def _(f: StatusFilter):
    return Post.status == f.status.value


@_clause.register
def _(f: AuthorFilter):
    return Post.author_id == f.author_id


@_clause.register
def _(f: TextSearch):
    pattern = f"%{f.text.strip()}%"
    return or_(Post.title.ilike(pattern), Post.content.ilike(pattern))


class PostRepository:
    """Single source of truth for posts; wraps one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self):
        """Commit on success, roll back on any error.

        Store errors are surfaced as ``InternalError``; API errors raised
        inside the block propagate unchanged after the rollback.
        """
        try:
            yield
            self.db.commit()
        except ApiException:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            db_logger.error("Post store transaction failed", error=e)
            raise InternalError("Database operation failed") from e

    def get(self, post_id: int, for_update: bool = False) -> Optional[Post]:
        query = self.db.query(Post).filter(Post.id == post_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def slug_exists(self, slug: str) -> bool:
        return self.db.query(Post.id).filter(Post.slug == slug).first() is not None

    def add(self, post: Post) -> Post:
        self.db.add(post)
        self.db.flush()
        return post

    def delete(self, post: Post) -> None:
        self.db.delete(post)

    def list(self, query: PostQuery) -> Tuple[List[Post], int]:
        base = self.db.query(Post)
        for f in query.filters:
            base = base.filter(_clause(f))

        total = base.count()
        order = (
            (Post.published_at.desc(), Post.id.desc())
            if query.order_by_published
            else (Post.created_at.desc(), Post.id.desc())
        )
        items = (
            base.options(joinedload(Post.author))
            .order_by(*order)
            .offset(query.pagination.offset)
            .limit(query.pagination.limit)
            .all()
        )
        return items, total

    def due_scheduled_ids(self, now: datetime) -> List[int]:
        rows = (
            self.db.query(Post.id)
            .filter(Post.status == PostStatus.SCHEDULED.value, Post.scheduled_for <= now)
            .order_by(Post.scheduled_for.asc())
            .all()
        )
        return [row.id for row in rows]
