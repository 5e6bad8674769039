import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, String

from devconnect.core.db import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """
    Durable user record owned by the profile service.

    Only the presence mirror (is_online / last_seen) is written from here.
    """

    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_new_id)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=True)

    is_online = Column(Boolean, default=False, nullable=False)
    last_seen = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)
