"""Session-scoped key/value persistence for in-progress bookings.

A reload mid-flow must resume from exactly what was stored here, so every
accumulator mutation writes through to the store before returning.
"""
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import SessionEntry


class SessionStore(ABC):
    """Pluggable persistence adapter. Values are JSON text."""

    @abstractmethod
    async def load(self, session_id: str) -> Dict[str, str]:
        pass

    @abstractmethod
    async def save(self, session_id: str, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def delete(self, session_id: str, key: str) -> None:
        pass

    @abstractmethod
    async def save_many(self, session_id: str, entries: Mapping[str, Optional[str]]) -> None:
        """Write several keys at once; a ``None`` value deletes the key. All or nothing."""
        pass

    @abstractmethod
    async def clear(self, session_id: str) -> None:
        pass


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._data: Dict[str, Dict[str, str]] = {}

    async def load(self, session_id: str) -> Dict[str, str]:
        return dict(self._data.get(session_id, {}))

    async def save(self, session_id: str, key: str, value: str) -> None:
        self._data.setdefault(session_id, {})[key] = value

    async def delete(self, session_id: str, key: str) -> None:
        self._data.get(session_id, {}).pop(key, None)

    async def save_many(self, session_id: str, entries: Mapping[str, Optional[str]]) -> None:
        data = dict(self._data.get(session_id, {}))
        for key, value in entries.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self._data[session_id] = data

    async def clear(self, session_id: str) -> None:
        self._data.pop(session_id, None)


class SqlSessionStore(SessionStore):
    """Durable store backed by the ``session_entries`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(self, session_id: str) -> Dict[str, str]:
        result = await self.db.execute(
            select(SessionEntry).where(SessionEntry.session_id == session_id)
        )
        return {entry.key: entry.value for entry in result.scalars().all()}

    async def save(self, session_id: str, key: str, value: str) -> None:
        await self.save_many(session_id, {key: value})

    async def delete(self, session_id: str, key: str) -> None:
        await self.save_many(session_id, {key: None})

    async def save_many(self, session_id: str, entries: Mapping[str, Optional[str]]) -> None:
        try:
            for key, value in entries.items():
                if value is None:
                    await self.db.execute(
                        delete(SessionEntry).where(
                            SessionEntry.session_id == session_id,
                            SessionEntry.key == key,
                        )
                    )
                    continue
                entry = await self.db.get(SessionEntry, (session_id, key))
                if entry is None:
                    self.db.add(SessionEntry(session_id=session_id, key=key, value=value))
                else:
                    entry.value = value
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def clear(self, session_id: str) -> None:
        await self.db.execute(
            delete(SessionEntry).where(SessionEntry.session_id == session_id)
        )
        await self.db.commit()
