from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from . import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Session(Base):
    """One live login. Ordered oldest-first by (created_at, id)."""

    __tablename__ = 'sessions'
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    # sha256 of the bearer token; the raw token is never stored
    token_hash = Column(String(128), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user = relationship('User', back_populates='sessions')
