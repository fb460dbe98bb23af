"""
Post model: the unit of the draft/scheduled/published lifecycle.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from ..database import Base, utc_now


class PostStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    SCHEDULED = "SCHEDULED"


class Post(Base):
    __tablename__ = "posts"
    __table_args__ = (
        CheckConstraint(
            "status != 'PUBLISHED' OR published_at IS NOT NULL",
            name="ck_posts_published_has_published_at",
        ),
        CheckConstraint(
            "status != 'SCHEDULED' OR scheduled_for IS NOT NULL",
            name="ck_posts_scheduled_has_scheduled_for",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(300), unique=True, index=True, nullable=False)
    content = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default=PostStatus.DRAFT.value, index=True)
    scheduled_for = Column(DateTime, nullable=True, index=True)
    published_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    author = relationship("User", back_populates="posts")
    revisions = relationship(
        "PostRevision",
        back_populates="post",
        cascade="all, delete-orphan",
        order_by="PostRevision.revision_timestamp.desc()",
    )

    def __repr__(self) -> str:
        return f"<Post id={self.id} slug={self.slug!r} status={self.status}>"
