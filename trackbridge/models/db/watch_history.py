"""Watch History Database Model."""

from datetime import UTC, datetime

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.sqltypes import DateTime, Enum, Integer, String

from trackbridge.models.db.base import Base
from trackbridge.models.tracking import MediaType

__all__ = ["WatchHistory"]


class WatchHistory(Base):
    """Model for locally recorded watch/read progress, one row per source item."""

    __tablename__ = "watch_history"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    media_id: Mapped[str] = mapped_column(String, index=True)
    normalized_id: Mapped[str | None] = mapped_column(
        String, nullable=True, index=True
    )
    media_type: Mapped[MediaType] = mapped_column(Enum(MediaType), index=True)
    title: Mapped[str] = mapped_column(String)
    cover_image: Mapped[str | None] = mapped_column(String, nullable=True)
    source_id: Mapped[str] = mapped_column(String, default="")
    source_name: Mapped[str] = mapped_column(String, default="")
    release_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    episode_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    chapter_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    last_played_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), index=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
