from __future__ import annotations

from sqlalchemy import BigInteger, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from story_engine.storage.base import Base


class RateLimit(Base):
    __tablename__ = "rate_limits_user"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    request_class: Mapped[str] = mapped_column(String(32), primary_key=True)
    # Epoch milliseconds, UTC.
    window_start_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    user: Mapped["User"] = relationship("User", back_populates="rate_limits")
