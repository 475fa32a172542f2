"""Document-oriented account store.

Collections hold schemaless documents keyed by account id. The store performs
no schema validation and no referential integrity checks; callers own the
consistency of what they write.

``put`` overwrites a whole document, ``merge`` shallow-merges the given
top-level fields into an existing document (creating it when absent), and
``put_many``/``merge_many`` apply several writes as one unit. Any value equal to
``SERVER_TIMESTAMP`` (also nested inside dicts and lists) is replaced with the
store clock's time when the write is applied.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.document import Document

logger = logging.getLogger(__name__)

COLLECTION_USERS = "users"
COLLECTION_ORGANIZATIONS = "organizations"
COLLECTION_INFLUENCERS = "influencers"

DocumentWrite = Tuple[str, str, Dict[str, Any]]


class ServerTimestamp:
    """Sentinel resolved to the store's clock at write time."""

    _instance: Optional["ServerTimestamp"] = None

    def __new__(cls) -> "ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> "ServerTimestamp":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "ServerTimestamp":
        return self


SERVER_TIMESTAMP = ServerTimestamp()


class StoreClock:
    """UTC clock that never hands out the same instant twice."""

    def __init__(self, now: Optional[Callable[[], datetime]] = None) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._last: Optional[datetime] = None

    def tick(self) -> datetime:
        current = self._now()
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return current


def resolve_server_timestamps(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {key: resolve_server_timestamps(item, now) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_server_timestamps(item, now) for item in value]
    return value


class AccountStore(ABC):
    """Key-value document collections keyed by account id."""

    def __init__(self, clock: Optional[StoreClock] = None) -> None:
        self.clock = clock or StoreClock()

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def put(self, collection: str, doc_id: str, document: Dict[str, Any]) -> Dict[str, Any]:
        """Overwrite the document and return it with timestamps resolved."""
        raise NotImplementedError

    @abstractmethod
    async def merge(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge ``fields`` and return the full resulting document."""
        raise NotImplementedError

    @abstractmethod
    async def put_many(self, writes: Sequence[DocumentWrite]) -> List[Dict[str, Any]]:
        """Overwrite several documents as a single unit."""
        raise NotImplementedError

    @abstractmethod
    async def merge_many(self, writes: Sequence[DocumentWrite]) -> List[Dict[str, Any]]:
        """Shallow-merge into several documents as a single unit."""
        raise NotImplementedError


class InMemoryAccountStore(AccountStore):
    """Process-local store used for tests and local development."""

    def __init__(self, clock: Optional[StoreClock] = None) -> None:
        super().__init__(clock)
        self._documents: Dict[Tuple[str, str], Dict[str, Any]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get((collection, doc_id))
        return copy.deepcopy(document) if document is not None else None

    async def put(self, collection: str, doc_id: str, document: Dict[str, Any]) -> Dict[str, Any]:
        resolved = resolve_server_timestamps(document, self.clock.tick())
        self._documents[(collection, doc_id)] = copy.deepcopy(resolved)
        return resolved

    def _apply_merge(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(self._documents.get((collection, doc_id)) or {})
        merged.update(copy.deepcopy(fields))
        self._documents[(collection, doc_id)] = merged
        return copy.deepcopy(merged)

    async def merge(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._apply_merge(collection, doc_id, resolve_server_timestamps(fields, self.clock.tick()))

    async def put_many(self, writes: Sequence[DocumentWrite]) -> List[Dict[str, Any]]:
        now = self.clock.tick()
        staged = [
            (collection, doc_id, resolve_server_timestamps(document, now))
            for collection, doc_id, document in writes
        ]
        for collection, doc_id, document in staged:
            self._documents[(collection, doc_id)] = copy.deepcopy(document)
        return [document for _, _, document in staged]

    async def merge_many(self, writes: Sequence[DocumentWrite]) -> List[Dict[str, Any]]:
        now = self.clock.tick()
        staged = [
            (collection, doc_id, resolve_server_timestamps(fields, now))
            for collection, doc_id, fields in writes
        ]
        return [self._apply_merge(collection, doc_id, fields) for collection, doc_id, fields in staged]

    def collection_size(self, collection: str) -> int:
        return sum(1 for key in self._documents if key[0] == collection)


_TIMESTAMP_KEY = "$timestamp"


def _encode(value: Any) -> Any:
    """Make a document JSON-safe, tagging datetimes so they survive a round trip."""
    if isinstance(value, datetime):
        return {_TIMESTAMP_KEY: value.isoformat()}
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_TIMESTAMP_KEY}:
            return datetime.fromisoformat(value[_TIMESTAMP_KEY])
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


_DIALECT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _sqlite_json_path(key: str) -> str:
    return '$."{}"'.format(key.replace('"', '\\"'))


class SqlAlchemyAccountStore(AccountStore):
    """Store backed by the ``documents`` table, one row per document.

    Writes are single ``INSERT ... ON CONFLICT DO UPDATE`` statements, so two
    sessions creating the same document both succeed and the later commit
    wins. Merges combine the stored JSON with the new fields inside the
    database (``jsonb ||`` on Postgres, ``json_set`` on SQLite), so concurrent
    merges of different fields keep each other's values.
    """

    def __init__(self, db: AsyncSession, clock: Optional[StoreClock] = None) -> None:
        super().__init__(clock)
        self.db = db

    def _dialect(self) -> str:
        name = self.db.get_bind().dialect.name
        if name not in _DIALECT_INSERTS:
            raise NotImplementedError(f"Account store does not support the {name} dialect")
        return name

    def _upsert(self, collection: str, doc_id: str, document: Dict[str, Any], now: datetime, *, merge: bool):
        dialect = self._dialect()
        encoded = _encode(document)
        stmt = _DIALECT_INSERTS[dialect](Document).values(
            collection=collection,
            id=doc_id,
            data=encoded,
            created_at=now,
            updated_at=now,
        )
        if not merge:
            data = stmt.excluded.data
        elif dialect == "postgresql":
            data = Document.data.op("||", return_type=JSONB)(stmt.excluded.data)
        elif encoded:
            arguments: List[Any] = []
            for key, value in encoded.items():
                arguments.extend([_sqlite_json_path(key), func.json(json.dumps(value))])
            data = func.json_set(Document.data, *arguments)
        else:
            data = Document.data
        return stmt.on_conflict_do_update(
            index_elements=[Document.collection, Document.id],
            set_={"data": data, "updated_at": now},
        ).returning(Document.data)

    async def _write(self, statements: Sequence[Any]) -> List[Dict[str, Any]]:
        stored: List[Dict[str, Any]] = []
        try:
            for stmt in statements:
                result = await self.db.execute(stmt)
                stored.append(_decode(result.scalar_one()))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return stored

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        result = await self.db.execute(
            select(Document.data).where(Document.collection == collection, Document.id == doc_id)
        )
        data = result.scalar_one_or_none()
        return _decode(data) if data is not None else None

    async def put(self, collection: str, doc_id: str, document: Dict[str, Any]) -> Dict[str, Any]:
        now = self.clock.tick()
        resolved = resolve_server_timestamps(document, now)
        await self._write([self._upsert(collection, doc_id, resolved, now, merge=False)])
        return resolved

    async def merge(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        now = self.clock.tick()
        resolved = resolve_server_timestamps(fields, now)
        (merged,) = await self._write([self._upsert(collection, doc_id, resolved, now, merge=True)])
        return merged

    async def put_many(self, writes: Sequence[DocumentWrite]) -> List[Dict[str, Any]]:
        now = self.clock.tick()
        resolved = [
            (collection, doc_id, resolve_server_timestamps(document, now))
            for collection, doc_id, document in writes
        ]
        await self._write(
            [self._upsert(collection, doc_id, document, now, merge=False) for collection, doc_id, document in resolved]
        )
        logger.debug("Committed %s documents in one batch", len(resolved))
        return [document for _, _, document in resolved]

    async def merge_many(self, writes: Sequence[DocumentWrite]) -> List[Dict[str, Any]]:
        now = self.clock.tick()
        statements = [
            self._upsert(collection, doc_id, resolve_server_timestamps(fields, now), now, merge=True)
            for collection, doc_id, fields in writes
        ]
        merged = await self._write(statements)
        logger.debug("Merged %s documents in one batch", len(merged))
        return merged
