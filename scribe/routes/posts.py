"""
Posts routes: authoring lifecycle, revisions and the public read path.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Response, status

from ..auth import get_required_user
from ..dependencies import get_post_controller
from ..models.user import User
from ..responses import paginated
from ..schemas.posts import PostCreate, PostSchedule, PostUpdate
from ..services.posts import Actor, PostLifecycleController, post_to_dict, revision_to_dict

router = APIRouter(prefix="/api/posts", tags=["posts"])


# ============================================================
# PUBLIC READ PATH
# ============================================================

@router.get("/published")
def list_published_posts(
    page: int = 1,
    limit: Optional[int] = None,
    search: Optional[str] = None,
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """List published posts, optionally filtered by a text search."""
    items, total = controller.list_published_posts(page=page, limit=limit, search=search)
    per_page = limit if limit is not None else controller.settings.default_page_size
    return paginated(items, total, page=page, per_page=per_page)


@router.get("/published/{post_id}")
def get_published_post(
    post_id: int,
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """Get a single published post."""
    return controller.get_published_post(post_id)


# ============================================================
# AUTHORING
# ============================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_post(
    post_data: PostCreate,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """Create a post for the current user (DRAFT unless a status is given)."""
    post = controller.create_post(
        Actor.from_user(current_user),
        title=post_data.title,
        content=post_data.content,
        status=post_data.status,
        scheduled_for=post_data.scheduled_for,
    )
    return post_to_dict(post)


@router.get("")
def list_own_posts(
    page: int = 1,
    limit: Optional[int] = None,
    status: Optional[str] = None,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """List the current user's posts, newest first."""
    posts, total = controller.list_own_posts(
        Actor.from_user(current_user), page=page, limit=limit, status=status
    )
    per_page = limit if limit is not None else controller.settings.default_page_size
    return paginated([post_to_dict(p) for p in posts], total, page=page, per_page=per_page)


@router.get("/{post_id}")
def get_post(
    post_id: int,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """Get one of the current user's posts."""
    return post_to_dict(controller.get_own_post(post_id, Actor.from_user(current_user)))


@router.put("/{post_id}")
def update_post(
    post_id: int,
    post_update: PostUpdate,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """Update a post; the previous title/content is kept as a revision."""
    post = controller.update_post(
        post_id,
        post_update.model_dump(exclude_unset=True),
        Actor.from_user(current_user),
    )
    return post_to_dict(post)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_post(
    post_id: int,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """Delete a post and its revisions."""
    controller.delete_post(post_id, Actor.from_user(current_user))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{post_id}/publish")
def publish_post(
    post_id: int,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """Publish a post immediately."""
    return post_to_dict(controller.publish_post(post_id, Actor.from_user(current_user)))


@router.post("/{post_id}/schedule")
def schedule_post(
    post_id: int,
    body: PostSchedule,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """Schedule a post for publication at `scheduledFor`."""
    post = controller.schedule_post(post_id, body.scheduled_for, Actor.from_user(current_user))
    return post_to_dict(post)


# ============================================================
# REVISIONS
# ============================================================

@router.get("/{post_id}/revisions")
def list_revisions(
    post_id: int,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """List a post's revisions, most recent first."""
    revisions = controller.get_post_revisions(post_id, Actor.from_user(current_user))
    return [revision_to_dict(r) for r in revisions]


@router.post("/{post_id}/revisions/{revision_id}/restore")
def restore_revision(
    post_id: int,
    revision_id: int,
    current_user: User = Depends(get_required_user),
    controller: PostLifecycleController = Depends(get_post_controller),
):
    """Restore a revision's title/content; the post returns to DRAFT."""
    post = controller.restore_post_revision(post_id, revision_id, Actor.from_user(current_user))
    return post_to_dict(post)
