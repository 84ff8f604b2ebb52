"""Base Model Module."""

from typing import Any

from pydantic.main import IncEx
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""

    def model_dump(
        self,
        *,
        include: IncEx | None = None,
        exclude: IncEx | None = None,
        exclude_none: bool = False,
    ) -> dict[str, Any]:
        """Dump the mapped column values to a dictionary.

        Imitates the behavior of Pydantic's model_dump method so rows can be fed
        straight into `model_validate` of the matching Pydantic model.
        """
        inc = set(include) if include and not isinstance(include, dict) else include
        exc = set(exclude) if exclude and not isinstance(exclude, dict) else exclude

        result = {}
        for column in self.__table__.columns:
            k = column.key
            v = getattr(self, k)
            if exclude_none and v is None:
                continue
            if inc and k not in inc:
                continue
            if exc and k in exc:
                continue
            result[k] = v
        return result
