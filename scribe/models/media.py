"""
Media model for uploaded images.
"""
from sqlalchemy import Column, Integer, String, DateTime, BigInteger, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base, utc_now


class Media(Base):
    __tablename__ = "media"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)  # original client filename
    filename = Column(String(255), nullable=False, unique=True)  # stored name
    url = Column(String(1000), nullable=False)
    size = Column(BigInteger, default=0)  # in bytes
    mime_type = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    user = relationship("User", back_populates="media")
