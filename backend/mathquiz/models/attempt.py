from datetime import datetime

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from mathquiz.db.base import Base


class ProgressRecord(Base):
    """One row per completed quiz. Append-only."""

    __tablename__ = "progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)

    operation: Mapped[str] = mapped_column(String(32))
    stage: Mapped[int] = mapped_column(Integer)
    score: Mapped[int] = mapped_column(Integer)
    total_time: Mapped[float] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, index=True)
