"""
Append-only snapshots of a post's title/content taken before each change.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship

from ..database import Base, utc_now


class PostRevision(Base):
    __tablename__ = "post_revisions"
    __table_args__ = (
        Index("ix_post_revisions_post_id_timestamp", "post_id", "revision_timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    post_id = Column(Integer, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False)
    title_snapshot = Column(String(255), nullable=False)
    content_snapshot = Column(Text, nullable=False)
    # Null once the revising user is deleted
    revision_author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    revision_timestamp = Column(DateTime, nullable=False, default=utc_now)

    # Relationships
    post = relationship("Post", back_populates="revisions")
