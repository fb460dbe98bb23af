"""
Post Lifecycle Controller.

Owns the DRAFT / SCHEDULED / PUBLISHED state machine and coordinates the
side effects of every transition:

    request -> ownership + validation -> store (+ revision snapshot)
            -> commit -> cache invalidation -> optional publish job

Transitions (all permissive, posts may cycle):

    DRAFT     -> PUBLISHED | SCHEDULED
    SCHEDULED -> PUBLISHED
    PUBLISHED -> DRAFT | SCHEDULED
    any       -> DRAFT            (restore)

The cache and the job scheduler are injected so that HTTP requests,
Celery workers and tests can each supply their own.
"""
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..database import isoformat, to_naive_utc, utc_now
from ..logging_config import db_logger, posts_logger
from ..models.post import Post, PostStatus
from ..models.post_revision import PostRevision
from ..models.user import User, UserRole
from ..responses import Forbidden, InternalError, NotFound, Unauthorized, ValidationError
from .cache import Cache, get_json, post_key, published_list_key, set_json
from .repository import (
    AuthorFilter,
    Pagination,
    PostQuery,
    PostRepository,
    StatusFilter,
    TextSearch,
)
from .revisions import RevisionLog
from .scheduler import JobScheduler, publish_delay

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 255
CONTENT_MIN_LENGTH = 10
SLUG_ATTEMPTS = 3

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a lifecycle operation."""
    user_id: int
    role: str = UserRole.PUBLIC.value

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


def slugify(title: str) -> str:
    slug = _SLUG_STRIP.sub("-", title.lower()).strip("-")
    return slug or "post"


def post_to_dict(post: Post, include_author: bool = False) -> Dict[str, Any]:
    """Convert a Post model to a JSON-ready dictionary."""
    data = {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "content": post.content,
        "status": post.status,
        "author_id": post.author_id,
        "scheduled_for": isoformat(post.scheduled_for),
        "published_at": isoformat(post.published_at),
        "created_at": isoformat(post.created_at),
        "updated_at": isoformat(post.updated_at),
    }
    if include_author and post.author is not None:
        data["author"] = {"id": post.author.id, "username": post.author.username}
    return data


def revision_to_dict(revision: PostRevision) -> Dict[str, Any]:
    return {
        "id": revision.id,
        "post_id": revision.post_id,
        "title_snapshot": revision.title_snapshot,
        "content_snapshot": revision.content_snapshot,
        "revision_author_id": revision.revision_author_id,
        "revision_timestamp": isoformat(revision.revision_timestamp),
    }


def _coerce_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, str):
        return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise TypeError(f"not a timestamp: {value!r}")


def _coerce_status(value: Any) -> PostStatus:
    return value if isinstance(value, PostStatus) else PostStatus(value)


def _error_fields(errors: List[Dict[str, str]]) -> List[str]:
    return [e["field"] for e in errors]


class PostLifecycleController:
    """Validates, persists and propagates every post status transition."""

    UPDATABLE_FIELDS = ("title", "content", "status", "scheduled_for")

    def __init__(
        self,
        db: Session,
        cache: Cache,
        scheduler: JobScheduler,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.cache = cache
        self.scheduler = scheduler
        self.clock = clock
        self.settings = settings or get_settings()
        self.posts = PostRepository(db)
        self.revisions = RevisionLog(db)

    # ============================================================
    # GUARDS
    # ============================================================

    def _require_actor(self, actor: Optional[Actor]) -> Actor:
        if actor is None:
            raise Unauthorized()
        return actor

    def _get_post(self, post_id: int, for_update: bool = False) -> Post:
        post = self.posts.get(post_id, for_update=for_update)
        if post is None:
            raise NotFound("Post not found")
        return post

    def _get_owned_post(self, post_id: int, actor: Optional[Actor], for_update: bool = False) -> Post:
        actor = self._require_actor(actor)
        post = self._get_post(post_id, for_update=for_update)
        if post.author_id != actor.user_id:
            posts_logger.warning("Ownership check failed", post_id=post_id, actor_id=actor.user_id)
            raise Forbidden("You do not own this post")
        return post

    def _check_fields(self, values: Mapping[str, Any], errors: List[Dict[str, str]]) -> Dict[str, Any]:
        """Validate the supplied fields, appending to ``errors``; return coerced values."""
        clean: Dict[str, Any] = {}
        if "title" in values:
            title = values["title"]
            if not isinstance(title, str) or len(title.strip()) < TITLE_MIN_LENGTH:
                errors.append({"field": "title", "message": f"Title must be at least {TITLE_MIN_LENGTH} characters"})
            elif len(title) > TITLE_MAX_LENGTH:
                errors.append({"field": "title", "message": f"Title must be at most {TITLE_MAX_LENGTH} characters"})
            else:
                clean["title"] = title
        if "content" in values:
            content = values["content"]
            if not isinstance(content, str) or len(content.strip()) < CONTENT_MIN_LENGTH:
                errors.append({"field": "content", "message": f"Content must be at least {CONTENT_MIN_LENGTH} characters"})
            else:
                clean["content"] = content
        if "status" in values:
            try:
                clean["status"] = _coerce_status(values["status"])
            except ValueError:
                errors.append({"field": "status", "message": "Status must be one of DRAFT, PUBLISHED, SCHEDULED"})
        if "scheduled_for" in values:
            try:
                clean["scheduled_for"] = _coerce_timestamp(values["scheduled_for"])
            except (TypeError, ValueError):
                errors.append({"field": "scheduled_for", "message": "scheduled_for must be a valid ISO-8601 timestamp"})
        return clean

    def _check_schedulable(self, scheduled_for: Optional[datetime], now: datetime, errors: List[Dict[str, str]]) -> None:
        if scheduled_for is None:
            errors.append({"field": "scheduled_for", "message": "scheduled_for is required to schedule a post"})
        elif scheduled_for <= now:
            errors.append({"field": "scheduled_for", "message": "scheduled_for must be in the future"})

    @staticmethod
    def _raise_if(errors: List[Dict[str, str]]) -> None:
        if errors:
            raise ValidationError("Validation failed", details={"errors": errors})

    # ============================================================
    # SIDE EFFECTS
    # ============================================================

    def _invalidate(self, post_id: int) -> None:
        # Listing entries are left to expire on their TTL.
        self.cache.delete(post_key(post_id))

    def _enqueue_publication(self, post: Post, now: datetime) -> Optional[str]:
        """Queue the deferred publish for a committed SCHEDULED post.

        Past or present times are not queued. Enqueue failures leave the post
        SCHEDULED for the ``check-scheduled`` sweep to pick up.
        """
        delay = publish_delay(post.scheduled_for, now)
        if delay <= 0:
            return None
        try:
            job_id = self.scheduler.enqueue_publish(post.id, delay)
        except Exception as e:
            posts_logger.error(
                "Failed to enqueue publish job; relying on scheduled sweep",
                error=e,
                post_id=post.id,
            )
            return None
        posts_logger.info(
            "Publish job enqueued",
            post_id=post.id,
            job_id=job_id,
            delay_seconds=round(delay, 3),
        )
        return job_id

    def _unique_slug(self, title: str) -> str:
        base = slugify(title)
        if not self.posts.slug_exists(base):
            return base
        millis = int(self.clock().replace(tzinfo=timezone.utc).timestamp() * 1000)
        stamped = f"{base}-{millis}"
        candidate, n = stamped, 1
        while self.posts.slug_exists(candidate):
            candidate = f"{stamped}-{n}"
            n += 1
        return candidate

    def _insert(self, post: Post) -> Post:
        """Insert a new post, re-rolling the slug if a concurrent insert took it."""
        for _ in range(SLUG_ATTEMPTS):
            try:
                self.posts.add(post)
                self.db.commit()
                return post
            except IntegrityError as e:
                self.db.rollback()
                if not self.posts.slug_exists(post.slug):
                    db_logger.error("Post insert failed", error=e)
                    raise InternalError("Database operation failed") from e
                post.slug = f"{slugify(post.title)}-{uuid.uuid4().hex[:8]}"
            except SQLAlchemyError as e:
                self.db.rollback()
                db_logger.error("Post insert failed", error=e)
                raise InternalError("Database operation failed") from e
        raise InternalError("Could not allocate a unique slug")

    # ============================================================
    # WRITE OPERATIONS
    # ============================================================

    def create_post(
        self,
        actor: Optional[Actor],
        title: Any,
        content: Any,
        status: Any = None,
        scheduled_for: Any = None,
    ) -> Post:
        actor = self._require_actor(actor)
        now = self.clock()

        errors: List[Dict[str, str]] = []
        values: Dict[str, Any] = {"title": title, "content": content}
        if status is not None:
            values["status"] = status
        if scheduled_for is not None:
            values["scheduled_for"] = scheduled_for
        clean = self._check_fields(values, errors)

        new_status = clean.get("status", PostStatus.DRAFT)
        if new_status == PostStatus.SCHEDULED and "scheduled_for" not in _error_fields(errors):
            self._check_schedulable(clean.get("scheduled_for"), now, errors)
        self._raise_if(errors)

        post = Post(
            author_id=actor.user_id,
            title=clean["title"],
            content=clean["content"],
            slug=self._unique_slug(clean["title"]),
            status=new_status.value,
            scheduled_for=clean.get("scheduled_for"),
            published_at=now if new_status == PostStatus.PUBLISHED else None,
            created_at=now,
            updated_at=now,
        )
        self._insert(post)
        posts_logger.info("Post created", post_id=post.id, slug=post.slug, status=post.status)

        if new_status == PostStatus.SCHEDULED:
            self._enqueue_publication(post, now)
        return post

    def update_post(self, post_id: int, patch: Mapping[str, Any], actor: Optional[Actor]) -> Post:
        """Apply ``patch`` after snapshotting the pre-update title/content.

        ``None`` values in the patch are ignored. The slug is never changed.
        """
        now = self.clock()
        values = {k: v for k, v in patch.items() if k in self.UPDATABLE_FIELDS and v is not None}

        with self.posts.transaction():
            post = self._get_owned_post(post_id, actor, for_update=True)

            errors: List[Dict[str, str]] = []
            clean = self._check_fields(values, errors)
            new_status = clean.get("status", PostStatus(post.status))
            reschedules = new_status == PostStatus.SCHEDULED and (
                "status" in clean or "scheduled_for" in clean
            )
            if reschedules and "scheduled_for" not in _error_fields(errors):
                self._check_schedulable(clean.get("scheduled_for", post.scheduled_for), now, errors)
            self._raise_if(errors)

            self.revisions.snapshot(post, actor.user_id, now)

            if "title" in clean:
                post.title = clean["title"]
            if "content" in clean:
                post.content = clean["content"]
            if "scheduled_for" in clean:
                post.scheduled_for = clean["scheduled_for"]
            if new_status == PostStatus.PUBLISHED and (
                post.status != PostStatus.PUBLISHED.value or post.published_at is None
            ):
                post.published_at = now
            post.status = new_status.value
            post.updated_at = now

        self._invalidate(post.id)
        posts_logger.info("Post updated", post_id=post.id, status=post.status, fields=sorted(clean))

        if reschedules:
            self._enqueue_publication(post, now)
        return post

    def delete_post(self, post_id: int, actor: Optional[Actor]) -> None:
        with self.posts.transaction():
            post = self._get_owned_post(post_id, actor, for_update=True)
            self.posts.delete(post)

        self._invalidate(post_id)
        posts_logger.info("Post deleted", post_id=post_id)

    def publish_post(self, post_id: int, actor: Optional[Actor]) -> Post:
        """Publish now. Re-publishing refreshes ``published_at``."""
        now = self.clock()
        with self.posts.transaction():
            post = self._get_owned_post(post_id, actor, for_update=True)
            post.status = PostStatus.PUBLISHED.value
            if post.published_at is None or now > post.published_at:
                post.published_at = now
            post.updated_at = now

        self._invalidate(post.id)
        posts_logger.info("Post published", post_id=post.id)
        return post

    def schedule_post(self, post_id: int, scheduled_for: Any, actor: Optional[Actor]) -> Post:
        now = self.clock()
        with self.posts.transaction():
            post = self._get_owned_post(post_id, actor, for_update=True)

            errors: List[Dict[str, str]] = []
            when = None
            if scheduled_for is not None:
                when = self._check_fields({"scheduled_for": scheduled_for}, errors).get("scheduled_for")
            if not errors:
                self._check_schedulable(when, now, errors)
            self._raise_if(errors)

            post.status = PostStatus.SCHEDULED.value
            post.scheduled_for = when
            post.updated_at = now

        self._invalidate(post.id)
        posts_logger.info("Post scheduled", post_id=post.id, scheduled_for=isoformat(when))
        self._enqueue_publication(post, now)
        return post

    def restore_post_revision(self, post_id: int, revision_id: int, actor: Optional[Actor]) -> Post:
        """Overwrite title/content from a revision and revert the post to DRAFT."""
        now = self.clock()
        with self.posts.transaction():
            post = self._get_owned_post(post_id, actor, for_update=True)
            revision = self.revisions.get(revision_id)
            if revision is None or revision.post_id != post.id:
                raise NotFound("Revision not found")

            self.revisions.snapshot(post, actor.user_id, now)
            post.title = revision.title_snapshot
            post.content = revision.content_snapshot
            post.status = PostStatus.DRAFT.value
            post.updated_at = now

        self._invalidate(post.id)
        posts_logger.info("Post restored from revision", post_id=post.id, revision_id=revision_id)
        return post

    # ============================================================
    # READ OPERATIONS
    # ============================================================

    def get_post_revisions(self, post_id: int, actor: Optional[Actor]) -> List[PostRevision]:
        """Newest first. Visible to the author and to admins."""
        actor = self._require_actor(actor)
        post = self._get_post(post_id)
        if post.author_id != actor.user_id and not actor.is_admin:
            raise Forbidden("You do not own this post")
        return self.revisions.for_post(post_id)

    def get_own_post(self, post_id: int, actor: Optional[Actor]) -> Post:
        return self._get_owned_post(post_id, actor)

    def list_own_posts(
        self,
        actor: Optional[Actor],
        page: int = 1,
        limit: Optional[int] = None,
        status: Any = None,
    ) -> Tuple[List[Post], int]:
        actor = self._require_actor(actor)
        filters = [AuthorFilter(actor.user_id)]
        if status is not None:
            errors: List[Dict[str, str]] = []
            clean = self._check_fields({"status": status}, errors)
            self._raise_if(errors)
            filters.append(StatusFilter(clean["status"]))
        query = PostQuery(filters=tuple(filters), pagination=self._pagination(page, limit))
        return self.posts.list(query)

    def get_published_post(self, post_id: int) -> Dict[str, Any]:
        key = post_key(post_id)
        cached = get_json(self.cache, key)
        if cached is not None:
            return cached

        post = self.posts.get(post_id)
        if post is None or post.status != PostStatus.PUBLISHED.value:
            raise NotFound("Post not found")

        data = post_to_dict(post, include_author=True)
        set_json(self.cache, key, data, self.settings.post_cache_ttl)
        return data

    def list_published_posts(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Published posts, newest publication first.

        Only the first unfiltered page is cached; search results and later
        pages always hit the store.
        """
        pagination = self._pagination(page, limit)
        filters = [StatusFilter(PostStatus.PUBLISHED)]
        if search and search.strip():
            filters.append(TextSearch(search))
        query = PostQuery(filters=tuple(filters), pagination=pagination, order_by_published=True)

        cacheable = pagination.page == 1 and not query.is_search
        key = published_list_key(pagination.page, pagination.limit)
        if cacheable:
            cached = get_json(self.cache, key)
            if cached is not None:
                return cached["items"], cached["total"]

        posts, total = self.posts.list(query)
        items = [post_to_dict(p, include_author=True) for p in posts]
        if cacheable:
            set_json(
                self.cache,
                key,
                {"items": items, "total": total},
                self.settings.published_list_cache_ttl,
            )
        return items, total

    def _pagination(self, page: int, limit: Optional[int]) -> Pagination:
        return Pagination(
            page=page,
            limit=limit if limit is not None else self.settings.default_page_size,
            max_limit=self.settings.max_page_size,
        )

    # ============================================================
    # SCHEDULER ENTRY POINTS
    # ============================================================

    def publish_due_post(self, post_id: int) -> bool:
        """Handler for ``publish-post``; returns True if the post was published.

        Re-checks current state, so late, duplicate or stale deliveries are
        a no-op: missing, already published, re-drafted and rescheduled-later
        posts are left alone. ``scheduled_for`` is kept for audit.
        """
        now = self.clock()
        with self.posts.transaction():
            post = self.posts.get(post_id, for_update=True)
            if post is None:
                posts_logger.info("Publish job skipped: post no longer exists", post_id=post_id)
                return False
            if post.status != PostStatus.SCHEDULED.value:
                posts_logger.info("Publish job skipped: post not scheduled", post_id=post_id, status=post.status)
                return False
            if post.scheduled_for is not None and post.scheduled_for > now:
                posts_logger.info(
                    "Publish job skipped: post rescheduled later",
                    post_id=post_id,
                    scheduled_for=isoformat(post.scheduled_for),
                )
                return False

            post.status = PostStatus.PUBLISHED.value
            post.published_at = now
            post.updated_at = now

        self._invalidate(post_id)
        posts_logger.info("Scheduled post published", post_id=post_id)
        return True

    def sweep_scheduled(self) -> List[int]:
        """Handler for ``check-scheduled``: enqueue immediate publishes for overdue posts."""
        due = self.posts.due_scheduled_ids(self.clock())
        for post_id in due:
            self.scheduler.enqueue_publish(post_id, 0)
        if due:
            posts_logger.info("Scheduled sweep enqueued overdue posts", count=len(due), post_ids=due)
        return due


