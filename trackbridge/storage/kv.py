"""Namespaced key-value storage."""

from typing import Protocol

from sqlalchemy import delete, select

from trackbridge.config.database import TrackBridgeDB
from trackbridge.models.db.key_value import KeyValue

__all__ = ["InMemoryKeyValueStore", "KeyValueStore", "SQLiteKeyValueStore"]


class KeyValueStore(Protocol):
    """String key-value store scoped to a single namespace."""

    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def keys(self) -> list[str]: ...


class InMemoryKeyValueStore:
    """Dictionary-backed store, used when no persistence is wanted."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    async def keys(self) -> list[str]:
        return list(self._data)


class SQLiteKeyValueStore:
    """Store backed by the `key_value` table, one namespace per instance."""

    def __init__(self, db: TrackBridgeDB, namespace: str) -> None:
        """Initialize the store.

        Args:
            db (TrackBridgeDB): Database manager
            namespace (str): Namespace isolating this store's keys from others
        """
        self.db = db
        self.namespace = namespace

    async def get(self, key: str) -> str | None:
        with self.db as ctx:
            row = ctx.session.get(KeyValue, (self.namespace, key))
            return row.value if row is not None else None

    async def put(self, key: str, value: str) -> None:
        with self.db as ctx:
            ctx.session.merge(KeyValue(namespace=self.namespace, key=key, value=value))
            ctx.session.commit()

    async def delete(self, key: str) -> None:
        with self.db as ctx:
            ctx.session.execute(
                delete(KeyValue).where(
                    KeyValue.namespace == self.namespace, KeyValue.key == key
                )
            )
            ctx.session.commit()

    async def clear(self) -> None:
        with self.db as ctx:
            ctx.session.execute(
                delete(KeyValue).where(KeyValue.namespace == self.namespace)
            )
            ctx.session.commit()

    async def keys(self) -> list[str]:
        with self.db as ctx:
            return list(
                ctx.session.execute(
                    select(KeyValue.key)
                    .where(KeyValue.namespace == self.namespace)
                    .order_by(KeyValue.key)
                )
                .scalars()
                .all()
            )
