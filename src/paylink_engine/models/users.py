"""Account owner directory."""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from paylink_engine.models.base import Base, TimestampMixin, new_id


class AppUser(Base, TimestampMixin):
    """A user who owns payment requests and a receiving wallet.

    Authentication lives elsewhere; this row only carries what the
    lifecycle engine needs to route money and mirror records.
    """

    __tablename__ = "app_user"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    notion_api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    notion_database_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
