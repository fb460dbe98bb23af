"""
Revision Log: append-only snapshots of post title/content.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.post import Post
from ..models.post_revision import PostRevision


class RevisionLog:
    def __init__(self, db: Session):
        self.db = db

    def snapshot(self, post: Post, author_id: Optional[int], at: datetime) -> PostRevision:
        """Record the post's current title/content; caller owns the transaction."""
        revision = PostRevision(
            post_id=post.id,
            title_snapshot=post.title,
            content_snapshot=post.content,
            revision_author_id=author_id,
            revision_timestamp=at,
        )
        self.db.add(revision)
        return revision

    def for_post(self, post_id: int) -> List[PostRevision]:
        return (
            self.db.query(PostRevision)
            .filter(PostRevision.post_id == post_id)
            .order_by(PostRevision.revision_timestamp.desc(), PostRevision.id.desc())
            .all()
        )

    def get(self, revision_id: int) -> Optional[PostRevision]:
        return self.db.query(PostRevision).filter(PostRevision.id == revision_id).first()
