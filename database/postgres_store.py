"""PostgreSQL document store using asyncpg connection pooling

All collections share one JSONB table (see schema_postgres.sql). The
document key lives in the `id` column, the body in `data`.

Transactions:
- Transactional get() is SELECT ... FOR UPDATE, so concurrent writers of
  the same session row serialize on the row lock.
- Staged writes are flushed on the same connection before COMMIT.
- Serialization failures, deadlocks and unique violations (the votes
  collection has a unique (session_id, voter_id) index) surface as
  TransactionConflict so the gateway retries the attempt.
"""

import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import asyncpg
from asyncpg import Connection

from config import config, get_logger
from database.gateway import (
    OP_DELETE,
    OP_INSERT,
    OP_UPDATE,
    DocumentGateway,
    Filters,
    Transaction,
    WriteOperation,
    new_document_id,
)
from exceptions import DatabaseConnectionError, DatabaseError, NotFoundError, TransactionConflict

logger = get_logger(__name__).bind(component="postgres_store")

T = TypeVar("T")

_CONFLICT_ERRORS = (
    asyncpg.SerializationError,
    asyncpg.DeadlockDetectedError,
    asyncpg.UniqueViolationError,
)


def _jsonb_encoder(obj):
    """JSONB encoder with automatic Pydantic model serialization"""
    def default(o):
        if hasattr(o, 'model_dump'):
            return o.model_dump(mode="json")
        raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")

    return json.dumps(obj, default=default)


def _filter_document(filters: Filters) -> Dict[str, Any]:
    """Equality filters as a JSONB containment document"""
    return {field_name: value for field_name, value in filters}


def _row_to_document(row: asyncpg.Record) -> Dict[str, Any]:
    doc = dict(row["data"])
    doc["id"] = row["id"]
    return doc


def _body(data: Dict[str, Any]) -> Dict[str, Any]:
    body = dict(data)
    body.pop("id", None)
    return body


async def _apply_operation(conn: Connection, op: WriteOperation) -> None:
    """Execute one staged write on an open transaction connection"""
    if op.kind == OP_INSERT:
        await conn.execute(
            """
            INSERT INTO documents (collection, id, data, version, created_at, updated_at)
            VALUES ($1, $2, $3, 1, NOW(), NOW())
            """,
            op.collection,
            op.document_id,
            _body(op.data),
        )
    elif op.kind == OP_UPDATE:
        result = await conn.execute(
            """
            UPDATE documents
            SET data = data || $3, version = version + 1, updated_at = NOW()
            WHERE collection = $1 AND id = $2
            """,
            op.collection,
            op.document_id,
            _body(op.data),
        )
        if PostgresDocumentStore._parse_row_count(result) == 0:
            raise NotFoundError("Document not found", resource=op.collection, identifier=op.document_id)
    elif op.kind == OP_DELETE:
        await conn.execute(
            "DELETE FROM documents WHERE collection = $1 AND id = $2",
            op.collection,
            op.document_id,
        )


class PostgresDocumentStore(DocumentGateway):
    """Document store over a shared asyncpg pool"""

    def __init__(
        self,
        pool: asyncpg.Pool,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        """Initialize with an existing pool

        Use PostgresDocumentStore.create() instead of direct instantiation.
        """
        super().__init__(max_attempts=max_attempts, retry_delay=retry_delay)
        self.pool = pool

    @classmethod
    async def create(
        cls,
        dsn: Optional[str] = None,
        min_size: int = config.POSTGRES_POOL_MIN_SIZE,
        max_size: int = config.POSTGRES_POOL_MAX_SIZE,
    ) -> "PostgresDocumentStore":
        """Create store with connection pool

        Args:
            dsn: PostgreSQL connection string (defaults to config.get_postgres_dsn())
            min_size: Minimum pool size
            max_size: Maximum pool size

        Returns:
            Initialized store
        """
        if dsn is None:
            dsn = config.get_postgres_dsn()

        async def init_connection(conn):
            """Initialize connection with JSONB codec for automatic serialization"""
            await conn.set_type_codec(
                'jsonb',
                encoder=_jsonb_encoder,
                decoder=json.loads,
                schema='pg_catalog'
            )

        try:
            pool = await asyncpg.create_pool(
                dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=60,
                init=init_connection,
            )
            logger.info("connection pool created", min_size=min_size, max_size=max_size)
            return cls(pool)
        except (asyncpg.PostgresError, OSError, ConnectionError) as e:
            logger.error("failed to create connection pool", error=str(e))
            raise DatabaseConnectionError(f"Failed to connect to PostgreSQL: {e}")

    async def close(self) -> None:
        await self.pool.close()
        logger.info("connection pool closed")

    async def init_schema(self) -> None:
        """Create the documents table and indexes (idempotent)"""
        schema_path = Path(__file__).parent / "schema_postgres.sql"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        async with self.pool.acquire() as conn:
            await conn.execute(schema_path.read_text())

        logger.info("document schema initialized")

    @staticmethod
    def _parse_row_count(result: str) -> int:
        """Extract row count from PostgreSQL result like 'UPDATE 5' or 'DELETE 3'."""
        if not result:
            return 0
        return int(result.split()[-1])

    # -------------------------------------------------------------------------
    # Gateway operations
    # -------------------------------------------------------------------------

    async def get_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, data FROM documents WHERE collection = $1 AND id = $2",
                collection,
                document_id,
            )
        if not row:
            raise NotFoundError("Document not found", resource=collection, identifier=document_id)
        return _row_to_document(row)

    async def query_documents(self, collection: str, filters: Filters) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, data FROM documents
                WHERE collection = $1 AND data @> $2
                ORDER BY created_at ASC
                """,
                collection,
                _filter_document(filters),
            )
        return [_row_to_document(row) for row in rows]

    async def insert_document(
        self, collection: str, data: Dict[str, Any], document_id: Optional[str] = None
    ) -> Dict[str, Any]:
        op = WriteOperation.insert(collection, data, document_id)
        try:
            async with self.pool.acquire() as conn:
                await _apply_operation(conn, op)
        except asyncpg.UniqueViolationError as e:
            raise DatabaseError("Document violates a unique constraint", {"collection": collection, "error": str(e)})
        doc = _body(data)
        doc["id"] = op.document_id
        return doc

    async def update_document(self, collection: str, document_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE documents
                SET data = data || $3, version = version + 1, updated_at = NOW()
                WHERE collection = $1 AND id = $2
                RETURNING id, data
                """,
                collection,
                document_id,
                _body(fields),
            )
        if not row:
            raise NotFoundError("Document not found", resource=collection, identifier=document_id)
        return _row_to_document(row)

    async def delete_document(self, collection: str, document_id: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM documents WHERE collection = $1 AND id = $2",
                collection,
                document_id,
            )
        return self._parse_row_count(result) > 0

    async def batch_write(self, operations: List[WriteOperation]) -> None:
        if not operations:
            return
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for op in operations:
                    await _apply_operation(conn, op)
        logger.debug("batch committed", operations=len(operations))

    async def _run_once(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    txn = PostgresTransaction(conn)
                    result = await fn(txn)
                    await txn.flush()
                return result
        except _CONFLICT_ERRORS as e:
            raise TransactionConflict(f"PostgreSQL rejected transaction: {type(e).__name__}")


class PostgresTransaction(Transaction):
    """Single attempt of a PostgresDocumentStore transaction"""

    def __init__(self, conn: Connection):
        self._conn = conn
        self._writes: List[WriteOperation] = []

    async def get(self, collection: str, document_id: str) -> Dict[str, Any]:
        if self._writes:
            raise DatabaseError("Transaction reads must precede writes")
        row = await self._conn.fetchrow(
            "SELECT id, data FROM documents WHERE collection = $1 AND id = $2 FOR UPDATE",
            collection,
            document_id,
        )
        if not row:
            raise NotFoundError("Document not found", resource=collection, identifier=document_id)
        return _row_to_document(row)

    async def query(self, collection: str, filters: Filters) -> List[Dict[str, Any]]:
        if self._writes:
            raise DatabaseError("Transaction reads must precede writes")
        rows = await self._conn.fetch(
            """
            SELECT id, data FROM documents
            WHERE collection = $1 AND data @> $2
            ORDER BY created_at ASC
            FOR UPDATE
            """,
            collection,
            _filter_document(filters),
        )
        return [_row_to_document(row) for row in rows]

    def insert(self, collection: str, data: Dict[str, Any], document_id: Optional[str] = None) -> str:
        op = WriteOperation.insert(collection, data, document_id or new_document_id())
        self._writes.append(op)
        return op.document_id

    def update(self, collection: str, document_id: str, fields: Dict[str, Any]) -> None:
        self._writes.append(WriteOperation.update(collection, document_id, fields))

    def delete(self, collection: str, document_id: str) -> None:
        self._writes.append(WriteOperation.delete(collection, document_id))

    async def flush(self) -> None:
        for op in self._writes:
            await _apply_operation(self._conn, op)
        self._writes.clear()
