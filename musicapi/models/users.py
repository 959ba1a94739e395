import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum, Index, func, text
from sqlalchemy.orm import relationship
from . import Base


class Role(str, enum.Enum):
    ADMIN = 'ADMIN'
    EDITOR = 'EDITOR'
    VIEWER = 'VIEWER'


class User(Base):
    __tablename__ = 'users'
    __table_args__ = (
        # at most one ADMIN row, whatever the interleaving of signups
        Index(
            'uq_users_single_admin', 'role', unique=True,
            postgresql_where=text("role = 'ADMIN'"),
            sqlite_where=text("role = 'ADMIN'"),
        ),
    )
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(Enum(Role, name='user_role'), nullable=False, default=Role.VIEWER)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sessions = relationship('Session', back_populates='user', passive_deletes=True)
