"""Key-Value Model Module."""

from datetime import UTC, datetime

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.sqltypes import DateTime, String

from trackbridge.models.db.base import Base

__all__ = ["KeyValue"]


class KeyValue(Base):
    """Model for the key_value table.

    Stores string values grouped by namespace, such as the service ID
    resolution cache and persisted OAuth tokens.
    """

    __tablename__ = "key_value"

    namespace: Mapped[str] = mapped_column(String, primary_key=True)
    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(String)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
