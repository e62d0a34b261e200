"""In-process document store

Implements the gateway contract on top of dicts for local development and
tests. Concurrency model:

- Transactional get() takes a per-document asyncio lock held until the
  attempt ends, so writers of the same session document queue up instead
  of failing. A lock is discarded once no transaction holds or awaits it.
- Every transactional read (get and query) records what it saw. Commit
  re-checks versions and re-runs queries; any difference raises
  TransactionConflict and the gateway retries the attempt.
- Non-transactional writes never take locks; they bump versions, which is
  what makes an in-flight transaction that read the same document conflict.

Commit runs without awaiting, so it is atomic with respect to the event loop.
"""

import asyncio
import copy
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple, TypeVar

from config import get_logger
from database.gateway import (
    OP_DELETE,
    OP_INSERT,
    OP_UPDATE,
    DocumentGateway,
    Filters,
    Transaction,
    WriteOperation,
    matches_filters,
    new_document_id,
)
from exceptions import DatabaseError, NotFoundError, TransactionConflict

logger = get_logger(__name__).bind(component="memory_store")

T = TypeVar("T")

Key = Tuple[str, str]


class _Stored:
    __slots__ = ("data", "version")

    def __init__(self, data: Dict[str, Any], version: int):
        self.data = data
        self.version = version


class MemoryDocumentStore(DocumentGateway):
    """Dict-backed document store with optimistic validation and document locks"""

    def __init__(self, max_attempts: Optional[int] = None, retry_delay: Optional[float] = None):
        super().__init__(max_attempts=max_attempts, retry_delay=retry_delay)
        self._collections: Dict[str, Dict[str, _Stored]] = {}
        self._locks: Dict[Key, asyncio.Lock] = {}
        self._lock_refs: Dict[Key, int] = {}
        self._clock = 0

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _next_version(self) -> int:
        self._clock += 1
        return self._clock

    def _collection(self, name: str) -> Dict[str, _Stored]:
        return self._collections.setdefault(name, {})

    def _lock_for(self, key: Key) -> asyncio.Lock:
        """Lock for a document; every call must be paired with _unref_lock"""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._lock_refs[key] = self._lock_refs.get(key, 0) + 1
        return lock

    def _unref_lock(self, key: Key) -> None:
        """Forget a document lock once no transaction holds or awaits it"""
        refs = self._lock_refs.get(key, 0) - 1
        if refs > 0:
            self._lock_refs[key] = refs
        else:
            self._lock_refs.pop(key, None)
            self._locks.pop(key, None)

    def _version_of(self, key: Key) -> Optional[int]:
        stored = self._collection(key[0]).get(key[1])
        return stored.version if stored else None

    @staticmethod
    def _materialize(document_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        doc = copy.deepcopy(data)
        doc["id"] = document_id
        return doc

    @staticmethod
    def _body(data: Dict[str, Any]) -> Dict[str, Any]:
        body = copy.deepcopy(data)
        body.pop("id", None)
        return body

    def _snapshot(self, collection: str, filters: Filters) -> FrozenSet[Tuple[str, int]]:
        return frozenset(
            (doc_id, stored.version)
            for doc_id, stored in self._collection(collection).items()
            if matches_filters(stored.data, filters)
        )

    def _apply(self, operations: List[WriteOperation]) -> None:
        """Validate then apply operations with no await in between"""
        staged: Dict[Key, Optional[Dict[str, Any]]] = {}

        def current(key: Key) -> Optional[Dict[str, Any]]:
            if key in staged:
                return staged[key]
            stored = self._collection(key[0]).get(key[1])
            return stored.data if stored else None

        for op in operations:
            key = (op.collection, op.document_id)
            existing = current(key)
            if op.kind == OP_INSERT:
                if existing is not None:
                    raise DatabaseError(
                        "Document already exists",
                        {"collection": op.collection, "document_id": op.document_id},
                    )
                staged[key] = self._body(op.data)
            elif op.kind == OP_UPDATE:
                if existing is None:
                    raise NotFoundError("Document not found", resource=op.collection, identifier=op.document_id)
                merged = dict(existing)
                merged.update(self._body(op.data))
                staged[key] = merged
            elif op.kind == OP_DELETE:
                staged[key] = None

        for (collection, doc_id), data in staged.items():
            docs = self._collection(collection)
            if data is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = _Stored(data, self._next_version())

    # -------------------------------------------------------------------------
    # Gateway operations
    # -------------------------------------------------------------------------

    async def get_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        stored = self._collection(collection).get(document_id)
        if stored is None:
            raise NotFoundError("Document not found", resource=collection, identifier=document_id)
        return self._materialize(document_id, stored.data)

    async def query_documents(self, collection: str, filters: Filters) -> List[Dict[str, Any]]:
        return [
            self._materialize(doc_id, stored.data)
            for doc_id, stored in self._collection(collection).items()
            if matches_filters(stored.data, filters)
        ]

    async def insert_document(
        self, collection: str, data: Dict[str, Any], document_id: Optional[str] = None
    ) -> Dict[str, Any]:
        op = WriteOperation.insert(collection, data, document_id)
        self._apply([op])
        return self._materialize(op.document_id, self._collection(collection)[op.document_id].data)

    async def update_document(self, collection: str, document_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._apply([WriteOperation.update(collection, document_id, fields)])
        return self._materialize(document_id, self._collection(collection)[document_id].data)

    async def delete_document(self, collection: str, document_id: str) -> bool:
        if document_id not in self._collection(collection):
            return False
        self._apply([WriteOperation.delete(collection, document_id)])
        return True

    async def batch_write(self, operations: List[WriteOperation]) -> None:
        if not operations:
            return
        self._apply(list(operations))
        logger.debug("batch committed", operations=len(operations))

    async def _run_once(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        txn = MemoryTransaction(self)
        try:
            result = await fn(txn)
            txn.commit()
            return result
        finally:
            txn.release()


class MemoryTransaction(Transaction):
    """Single attempt of a MemoryDocumentStore transaction"""

    def __init__(self, store: MemoryDocumentStore):
        self._store = store
        self._held: Dict[Key, asyncio.Lock] = {}
        self._read_versions: Dict[Key, Optional[int]] = {}
        self._query_reads: List[Tuple[str, Tuple[Tuple[str, Any], ...], FrozenSet[Tuple[str, int]]]] = []
        self._writes: List[WriteOperation] = []

    def _check_read_allowed(self):
        if self._writes:
            raise DatabaseError("Transaction reads must precede writes")

    async def get(self, collection: str, document_id: str) -> Dict[str, Any]:
        self._check_read_allowed()
        key = (collection, document_id)
        if key not in self._held:
            lock = self._store._lock_for(key)
            try:
                await lock.acquire()
            except BaseException:
                self._store._unref_lock(key)
                raise
            self._held[key] = lock

        # Yield so concurrent attempts interleave the way remote calls would
        await asyncio.sleep(0)

        version = self._store._version_of(key)
        self._read_versions.setdefault(key, version)
        if version is None:
            raise NotFoundError("Document not found", resource=collection, identifier=document_id)
        return self._store._materialize(document_id, self._store._collection(collection)[document_id].data)

    async def query(self, collection: str, filters: Filters) -> List[Dict[str, Any]]:
        self._check_read_allowed()
        await asyncio.sleep(0)
        frozen_filters = tuple(filters)
        self._query_reads.append((collection, frozen_filters, self._store._snapshot(collection, frozen_filters)))
        return await self._store.query_documents(collection, frozen_filters)

    def insert(self, collection: str, data: Dict[str, Any], document_id: Optional[str] = None) -> str:
        op = WriteOperation.insert(collection, data, document_id or new_document_id())
        self._writes.append(op)
        return op.document_id

    def update(self, collection: str, document_id: str, fields: Dict[str, Any]) -> None:
        self._writes.append(WriteOperation.update(collection, document_id, fields))

    def delete(self, collection: str, document_id: str) -> None:
        self._writes.append(WriteOperation.delete(collection, document_id))

    def commit(self) -> None:
        for key, version in self._read_versions.items():
            if self._store._version_of(key) != version:
                raise TransactionConflict("Document changed since read", collection=key[0], document_id=key[1])

        for collection, filters, seen in self._query_reads:
            if self._store._snapshot(collection, filters) != seen:
                raise TransactionConflict("Query results changed since read", collection=collection)

        if self._writes:
            self._store._apply(self._writes)

    def release(self) -> None:
        for key, lock in self._held.items():
            lock.release()
            self._store._unref_lock(key)
        self._held.clear()
