from __future__ import annotations

import copy
import inspect
import json
from collections.abc import Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Mapping, Protocol, runtime_checkable

try:
    import asyncpg
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    asyncpg = None  # type: ignore[assignment]

from ..core.config import Settings
from ..core.logging import get_logger
from ..utils.json_encoding import decode_jsonb, encode_jsonb

logger = get_logger(name=__name__)

TimestampFactory = Callable[[], datetime]

__all__ = [
    "DocumentStore",
    "DocumentStoreError",
    "InMemoryDocumentStore",
    "PostgresDocumentStore",
    "build_document_store",
    "load_seed_documents",
]


class DocumentStoreError(RuntimeError):
    """Raised when the backing document store cannot complete an operation."""


@runtime_checkable
class DocumentStore(Protocol):
    async def read(self, collection: str, document_id: str) -> dict[str, Any] | None: ...

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def create(self, collection: str, document: Mapping[str, Any]) -> dict[str, Any]: ...

    async def replace(self, collection: str, document_id: str, document: Mapping[str, Any]) -> dict[str, Any] | None: ...

    async def append(self, collection: str, document: Mapping[str, Any]) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


def _document_id(document: Mapping[str, Any]) -> str:
    document_id = document.get("id")
    if not isinstance(document_id, str) or not document_id.strip():
        raise DocumentStoreError("Documents require a non-empty string 'id'")
    return document_id


def _matches(document: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    return all(document.get(key) == value for key, value in filters.items())


class InMemoryDocumentStore:
    """Process-local collections of JSON documents keyed by id."""

    def __init__(self, seed: Mapping[str, Iterable[Mapping[str, Any]]] | None = None) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        for collection, documents in (seed or {}).items():
            bucket = self._collections.setdefault(collection, {})
            for document in documents:
                bucket[_document_id(document)] = copy.deepcopy(dict(document))

    def documents(self, collection: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._collections.get(collection, {}).values()]

    async def read(self, collection: str, document_id: str) -> dict[str, Any] | None:
        document = self._collections.get(collection, {}).get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        matches = [
            copy.deepcopy(document)
            for document in self._collections.get(collection, {}).values()
            if _matches(document, filters or {})
        ]
        return matches[:limit] if limit is not None else matches

    async def create(self, collection: str, document: Mapping[str, Any]) -> dict[str, Any]:
        document_id = _document_id(document)
        bucket = self._collections.setdefault(collection, {})
        if document_id in bucket:
            raise DocumentStoreError(f"Document '{document_id}' already exists in '{collection}'")
        bucket[document_id] = copy.deepcopy(dict(document))
        return copy.deepcopy(bucket[document_id])

    async def replace(self, collection: str, document_id: str, document: Mapping[str, Any]) -> dict[str, Any] | None:
        bucket = self._collections.get(collection, {})
        if document_id not in bucket:
            return None
        stored = copy.deepcopy(dict(document))
        stored["id"] = document_id
        bucket[document_id] = stored
        return copy.deepcopy(stored)

    async def append(self, collection: str, document: Mapping[str, Any]) -> dict[str, Any]:
        document_id = _document_id(document)
        bucket = self._collections.setdefault(collection, {})
        bucket[document_id] = copy.deepcopy(dict(document))
        return copy.deepcopy(bucket[document_id])

    async def aclose(self) -> None:
        return None


class PostgresDocumentStore:
    """Collections stored as JSONB rows of the ``documents`` table."""

    _READ = "SELECT body FROM documents WHERE collection = $1 AND id = $2"
    _QUERY = """
        SELECT body FROM documents
        WHERE collection = $1 AND body @> $2::jsonb
        ORDER BY created_at ASC
    """
    _INSERT = """
        INSERT INTO documents (collection, id, body, created_at, updated_at)
        VALUES ($1, $2, $3::jsonb, $4, $4)
    """
    _REPLACE = """
        UPDATE documents SET body = $3::jsonb, updated_at = $4
        WHERE collection = $1 AND id = $2
        RETURNING body
    """
    _UPSERT = """
        INSERT INTO documents (collection, id, body, created_at, updated_at)
        VALUES ($1, $2, $3::jsonb, $4, $4)
        ON CONFLICT (collection, id) DO UPDATE SET body = EXCLUDED.body, updated_at = EXCLUDED.updated_at
    """

    def __init__(self, pool: Any, *, now: TimestampFactory | None = None) -> None:
        if asyncpg is None:
            raise RuntimeError("asyncpg is required for PostgresDocumentStore")
        self._pool_or_coroutine = pool
        self._pool: Any | None = None
        self._now: TimestampFactory = now or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresDocumentStore":
        if asyncpg is None:
            raise RuntimeError("asyncpg is not available")
        pool = asyncpg.create_pool(
            dsn=str(settings.store.dsn),
            min_size=settings.store.pool_min_size,
            max_size=settings.store.pool_max_size,
        )
        return cls(pool)

    async def read(self, collection: str, document_id: str) -> dict[str, Any] | None:
        async with self._connection() as connection:
            row = await connection.fetchrow(self._READ, collection, document_id)
        return decode_jsonb(row["body"]) if row is not None else None

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        sql = self._QUERY
        params: list[Any] = [collection, encode_jsonb(dict(filters or {}))]
        if limit is not None:
            sql = f"{sql} LIMIT $3"
            params.append(limit)
        async with self._connection() as connection:
            rows = await connection.fetch(sql, *params)
        return [decode_jsonb(row["body"]) for row in rows]

    async def create(self, collection: str, document: Mapping[str, Any]) -> dict[str, Any]:
        document_id = _document_id(document)
        body = dict(document)
        try:
            async with self._connection() as connection:
                await connection.execute(self._INSERT, collection, document_id, encode_jsonb(body), self._now())
        except DocumentStoreError as exc:
            if isinstance(exc.__cause__, asyncpg.UniqueViolationError):
                raise DocumentStoreError(f"Document '{document_id}' already exists in '{collection}'") from exc
            raise
        return body

    async def replace(self, collection: str, document_id: str, document: Mapping[str, Any]) -> dict[str, Any] | None:
        body = dict(document)
        body["id"] = document_id
        async with self._connection() as connection:
            row = await connection.fetchrow(self._REPLACE, collection, document_id, encode_jsonb(body), self._now())
        return decode_jsonb(row["body"]) if row is not None else None

    async def append(self, collection: str, document: Mapping[str, Any]) -> dict[str, Any]:
        document_id = _document_id(document)
        body = dict(document)
        async with self._connection() as connection:
            await connection.execute(self._UPSERT, collection, document_id, encode_jsonb(body), self._now())
        return body

    async def aclose(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        pool = await self._ensure_pool()
        try:
            async with pool.acquire() as connection:
                yield connection
        except (asyncpg.PostgresError, OSError) as exc:
            logger.error("document_store_failure", error=str(exc), error_type=type(exc).__name__)
            raise DocumentStoreError(str(exc)) from exc

    async def _ensure_pool(self) -> Any:
        if self._pool is not None:
            return self._pool
        candidate = self._pool_or_coroutine
        if inspect.isawaitable(candidate):
            try:
                candidate = await candidate
            except (asyncpg.PostgresError, OSError) as exc:
                raise DocumentStoreError(f"Unable to connect to the document store: {exc}") from exc
        if not isinstance(candidate, asyncpg.Pool):
            raise RuntimeError("Invalid asyncpg pool supplied to PostgresDocumentStore")
        self._pool = candidate
        return self._pool


def load_seed_documents(path: Path) -> dict[str, list[dict[str, Any]]]:
    """Read ``{collection: [documents]}`` from a JSON file."""
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise DocumentStoreError(f"Unable to load seed documents from {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise DocumentStoreError("Seed file must contain an object keyed by collection")
    return {
        str(collection): [dict(doc) for doc in documents if isinstance(doc, Mapping)]
        for collection, documents in payload.items()
        if isinstance(documents, list)
    }


def build_document_store(settings: Settings) -> DocumentStore:
    if settings.store.backend == "postgres":
        logger.info("document_store_selected", backend="postgres")
        return PostgresDocumentStore.from_settings(settings)
    seed = load_seed_documents(settings.store.seed_path) if settings.store.seed_path is not None else None
    logger.info("document_store_selected", backend="memory", seeded=seed is not None)
    return InMemoryDocumentStore(seed)
