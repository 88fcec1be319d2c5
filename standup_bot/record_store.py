# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Document record store.

The bot keeps check-ins, standups, channel mappings and configuration as
JSON documents grouped in named collections. This module provides the small
set of operations the bot relies on (append, filtered query, singleton
get/upsert) over a PostgreSQL JSONB table, plus an in-memory store for
development and testing.
"""

import asyncio
import copy
import itertools
import json
import operator
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from standup_bot.logging_config import get_logger


logger = get_logger(__name__)

# Query timeouts (command_timeout) surface as asyncio.TimeoutError
DATABASE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

CREATED_AT = "created_at"

_OPERATORS = {
    "==": operator.eq,
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
}


class RecordStoreError(Exception):
    """Exception raised when a record store operation fails."""

    def __init__(self, message: str, collection: Optional[str] = None, original_error: Optional[Exception] = None):
        self.message = message
        self.collection = collection
        self.original_error = original_error
        super().__init__(message)


@dataclass(frozen=True)
class FieldFilter:
    """
    Comparison applied to one document field.

    `created_at` refers to the store-assigned creation timestamp; every
    other field name refers to a top-level key of the document.
    """
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, document: Dict[str, Any]) -> bool:
        if self.field not in document:
            return False
        actual = document[self.field]
        expected = self.value
        if isinstance(actual, datetime) or isinstance(expected, datetime):
            actual = _as_datetime(actual)
            expected = _as_datetime(expected)
        try:
            return _OPERATORS[self.op](actual, expected)
        except TypeError:
            return False


def eq(field: str, value: Any) -> FieldFilter:
    return FieldFilter(field, "==", value)


def _as_datetime(value: Any) -> Any:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class RecordStore:
    """
    Interface of the document store.

    Documents returned by the store are plain dictionaries carrying the
    stored fields plus `id` and `created_at`.
    """

    async def append(self, collection: str, record: Dict[str, Any]) -> str:
        """Insert a document and return its generated ID."""
        raise NotImplementedError

    async def query_latest(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_field: Optional[str] = CREATED_AT,
        limit: Optional[int] = None,
        descending: bool = True
    ) -> List[Dict[str, Any]]:
        """Return documents matching all filters, ordered and limited."""
        raise NotImplementedError

    async def get_singleton(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """Return the document stored under a well-known key, if any."""
        raise NotImplementedError

    async def upsert_singleton(
        self,
        collection: str,
        key: str,
        partial: Dict[str, Any],
        merge: bool = True
    ) -> None:
        """Create or update the document stored under a well-known key."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryRecordStore(RecordStore):
    """
    Record store kept in process memory.

    Used for local development and tests. Creation timestamps are strictly
    increasing so that ordering by `created_at` follows insertion order.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequence = itertools.count()
        self._last_created_at: Optional[datetime] = None

    def _next_timestamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = now
        return now

    async def append(self, collection: str, record: Dict[str, Any]) -> str:
        record_id = uuid.uuid4().hex
        document = json.loads(json.dumps(record, default=str))
        document["id"] = record_id
        document[CREATED_AT] = self._next_timestamp()
        document["_seq"] = next(self._sequence)
        self._collections.setdefault(collection, {})[record_id] = document
        return record_id

    async def query_latest(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_field: Optional[str] = CREATED_AT,
        limit: Optional[int] = None,
        descending: bool = True
    ) -> List[Dict[str, Any]]:
        documents = [
            document
            for document in self._collections.get(collection, {}).values()
            if all(f.matches(document) for f in filters)
        ]

        if order_field:
            documents.sort(
                key=lambda d: (str(d.get(order_field, "")) if order_field != CREATED_AT else d[CREATED_AT], d["_seq"]),
                reverse=descending
            )

        if limit is not None:
            documents = documents[:limit]

        return [self._public(document) for document in documents]

    async def get_singleton(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(key)
        return self._public(document) if document is not None else None

    async def upsert_singleton(
        self,
        collection: str,
        key: str,
        partial: Dict[str, Any],
        merge: bool = True
    ) -> None:
        documents = self._collections.setdefault(collection, {})
        incoming = json.loads(json.dumps(partial, default=str))
        existing = documents.get(key)

        if existing is not None and merge:
            existing.update(incoming)
            return

        incoming["id"] = key
        incoming[CREATED_AT] = existing[CREATED_AT] if existing else self._next_timestamp()
        incoming["_seq"] = existing["_seq"] if existing else next(self._sequence)
        documents[key] = incoming

    @staticmethod
    def _public(document: Dict[str, Any]) -> Dict[str, Any]:
        return {k: copy.deepcopy(v) for k, v in document.items() if k != "_seq"}


_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_SQL_OPERATORS = {
    "==": "=",
    ">=": ">=",
    "<=": "<=",
    ">": ">",
    "<": "<",
}


class PostgresRecordStore(RecordStore):
    """
    Record store backed by a single PostgreSQL JSONB table.

    Every collection shares the `documents` table; a document is addressed
    by (collection, id) and its fields live in the `data` column.
    """

    def __init__(self, database_url: str):
        """
        Initialize the record store.

        Args:
            database_url: PostgreSQL connection URL
        """
        self.database_url = database_url
        self._pool: Optional[asyncpg.Pool] = None

        logger.info("Initialized PostgresRecordStore")

    async def connect(self) -> None:
        """
        Create database connection pool.

        Raises:
            RecordStoreError: If connection fails
        """
        if self._pool is None:
            logger.info("Creating database connection pool")
            try:
                self._pool = await asyncpg.create_pool(
                    self.database_url,
                    min_size=2,
                    max_size=10,
                    command_timeout=30
                )
            except DATABASE_ERRORS as e:
                raise RecordStoreError(f"Could not connect to database: {e}", original_error=e) from e
            logger.info("Database connection pool created")

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._pool:
            logger.info("Closing database connection pool")
            await self._pool.close()
            self._pool = None
            logger.info("Database connection pool closed")

    async def close(self) -> None:
        await self.disconnect()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    def _require_pool(self) -> asyncpg.Pool:
        if not self._pool:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def initialize_schema(self) -> None:
        """Create the documents table and its indexes if they don't exist."""
        pool = self._require_pool()

        schema_sql = """
        CREATE TABLE IF NOT EXISTS documents (
            collection VARCHAR(64) NOT NULL,
            id VARCHAR(64) NOT NULL,
            data JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (collection, id)
        );

        CREATE INDEX IF NOT EXISTS idx_documents_collection_created
        ON documents(collection, created_at DESC);

        CREATE INDEX IF NOT EXISTS idx_documents_data
        ON documents USING GIN (data jsonb_path_ops);
        """

        logger.info("Initializing database schema")

        async with pool.acquire() as conn:
            await conn.execute(schema_sql)

        logger.info("Database schema initialized successfully")

    async def append(self, collection: str, record: Dict[str, Any]) -> str:
        pool = self._require_pool()
        record_id = uuid.uuid4().hex

        insert_sql = """
        INSERT INTO documents (collection, id, data)
        VALUES ($1, $2, $3::jsonb)
        RETURNING id
        """

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    insert_sql,
                    collection,
                    record_id,
                    json.dumps(record, default=str)
                )
        except DATABASE_ERRORS as e:
            logger.error(
                "Failed to append document",
                extra={"collection": collection, "error": str(e)}
            )
            raise RecordStoreError(f"Failed to append to {collection}: {e}", collection, e) from e

        logger.debug("Document appended", extra={"collection": collection, "record_id": row["id"]})
        return row["id"]

    async def query_latest(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_field: Optional[str] = CREATED_AT,
        limit: Optional[int] = None,
        descending: bool = True
    ) -> List[Dict[str, Any]]:
        pool = self._require_pool()

        clauses = ["collection = $1"]
        params: List[Any] = [collection]

        for field_filter in filters:
            params.append(None)
            placeholder = f"${len(params)}"
            sql_op = _SQL_OPERATORS[field_filter.op]

            if field_filter.field == CREATED_AT:
                params[-1] = _as_datetime(field_filter.value)
                clauses.append(f"created_at {sql_op} {placeholder}")
            elif field_filter.op == "==":
                params[-1] = json.dumps({field_filter.field: field_filter.value}, default=str)
                clauses.append(f"data @> {placeholder}::jsonb")
            else:
                params[-1] = str(field_filter.value)
                clauses.append(f"data->>'{_checked_field(field_filter.field)}' {sql_op} {placeholder}")

        query_sql = f"SELECT id, data, created_at FROM documents WHERE {' AND '.join(clauses)}"

        if order_field:
            direction = "DESC" if descending else "ASC"
            if order_field == CREATED_AT:
                query_sql += f" ORDER BY created_at {direction}"
            else:
                query_sql += f" ORDER BY data->>'{_checked_field(order_field)}' {direction}, created_at {direction}"

        if limit is not None:
            params.append(limit)
            query_sql += f" LIMIT ${len(params)}"

        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(query_sql, *params)
        except DATABASE_ERRORS as e:
            logger.error(
                "Failed to query documents",
                extra={"collection": collection, "error": str(e)}
            )
            raise RecordStoreError(f"Failed to query {collection}: {e}", collection, e) from e

        return [_row_to_document(row) for row in rows]

    async def get_singleton(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        pool = self._require_pool()

        select_sql = """
        SELECT id, data, created_at FROM documents
        WHERE collection = $1 AND id = $2
        """

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(select_sql, collection, key)
        except DATABASE_ERRORS as e:
            raise RecordStoreError(f"Failed to read {collection}/{key}: {e}", collection, e) from e

        return _row_to_document(row) if row else None

    async def upsert_singleton(
        self,
        collection: str,
        key: str,
        partial: Dict[str, Any],
        merge: bool = True
    ) -> None:
        pool = self._require_pool()

        update_clause = "documents.data || EXCLUDED.data" if merge else "EXCLUDED.data"
        upsert_sql = f"""
        INSERT INTO documents (collection, id, data)
        VALUES ($1, $2, $3::jsonb)
        ON CONFLICT (collection, id) DO UPDATE SET data = {update_clause}
        """

        try:
            async with pool.acquire() as conn:
                await conn.execute(upsert_sql, collection, key, json.dumps(partial, default=str))
        except DATABASE_ERRORS as e:
            logger.error(
                "Failed to upsert document",
                extra={"collection": collection, "record_id": key, "error": str(e)}
            )
            raise RecordStoreError(f"Failed to write {collection}/{key}: {e}", collection, e) from e

        logger.info("Document upserted", extra={"collection": collection, "record_id": key})


def _checked_field(name: str) -> str:
    if not _FIELD_NAME.match(name):
        raise ValueError(f"Invalid field name: {name}")
    return name


def _row_to_document(row) -> Dict[str, Any]:
    data = row["data"]
    document = json.loads(data) if isinstance(data, str) else dict(data)
    document["id"] = row["id"]
    document[CREATED_AT] = row["created_at"]
    return document


def create_record_store(database_url: Optional[str]) -> RecordStore:
    """Postgres store when a database URL is configured, in-memory otherwise."""
    if database_url:
        return PostgresRecordStore(database_url)
    logger.warning("DATABASE_URL not set, using in-memory record store")
    return InMemoryRecordStore()
