"""Document store contract consumed by the voting core

A gateway offers single-document reads and writes, equality-filtered
queries, atomic multi-document batches, and a read-modify-write
transaction with automatic retry on write conflicts.

Documents are plain JSON-compatible dicts. Every document returned by a
gateway carries its key under "id"; the key is never stored in the body.

Retry Semantics
---------------
    run_transaction(fn)
        Calls `await fn(txn)`. If the attempt loses a race the gateway
        raises TransactionConflict internally, sleeps with exponential
        backoff and jitter, and calls fn again with a fresh transaction.
        After max_attempts the caller receives ConflictError. Any other
        exception rolls the attempt back and propagates unchanged.

    fn must therefore be safe to re-run: do all reads through txn, stage
    writes through txn, and keep side effects (audit, metrics) outside.
"""

import asyncio
import random
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from config import config, get_logger
from exceptions import ConflictError, InvalidArgumentError, TransactionConflict
from server.metrics import metrics

logger = get_logger(__name__).bind(component="gateway")

T = TypeVar("T")

Filters = Sequence[Tuple[str, Any]]

OP_INSERT = "insert"
OP_UPDATE = "update"
OP_DELETE = "delete"


def new_document_id() -> str:
    """Generate an opaque 20-character document key"""
    return secrets.token_hex(10)


def matches_filters(doc: Dict[str, Any], filters: Filters) -> bool:
    """Equality match on top-level fields (a missing field never matches)"""
    for field_name, value in filters:
        if field_name not in doc or doc[field_name] != value:
            return False
    return True


@dataclass(frozen=True)
class WriteOperation:
    """One write in a batch_write call"""

    kind: str
    collection: str
    document_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in (OP_INSERT, OP_UPDATE, OP_DELETE):
            raise InvalidArgumentError(f"Unknown write operation: {self.kind}", field="kind", value=self.kind)
        if self.kind != OP_INSERT and not self.document_id:
            raise InvalidArgumentError(f"{self.kind} requires a document id", field="document_id")

    @classmethod
    def insert(cls, collection: str, data: Dict[str, Any], document_id: Optional[str] = None) -> "WriteOperation":
        return cls(OP_INSERT, collection, document_id or new_document_id(), data)

    @classmethod
    def update(cls, collection: str, document_id: str, fields: Dict[str, Any]) -> "WriteOperation":
        return cls(OP_UPDATE, collection, document_id, fields)

    @classmethod
    def delete(cls, collection: str, document_id: str) -> "WriteOperation":
        return cls(OP_DELETE, collection, document_id)


class Transaction(ABC):
    """Read-modify-write scope handed to run_transaction callbacks

    Reads are awaited and happen immediately. Writes are staged and applied
    atomically when the callback returns. Reads must precede writes.
    """

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Dict[str, Any]:
        """Read a document, raising NotFoundError if absent"""

    @abstractmethod
    async def query(self, collection: str, filters: Filters) -> List[Dict[str, Any]]:
        """Equality-filtered read within the transaction"""

    @abstractmethod
    def insert(self, collection: str, data: Dict[str, Any], document_id: Optional[str] = None) -> str:
        """Stage an insert and return the new document id"""

    @abstractmethod
    def update(self, collection: str, document_id: str, fields: Dict[str, Any]) -> None:
        """Stage a top-level field merge"""

    @abstractmethod
    def delete(self, collection: str, document_id: str) -> None:
        """Stage a delete"""


class DocumentGateway(ABC):
    """Base class for document stores

    Subclasses implement storage; the retry loop lives here so every store
    honours the same bounded-retry contract.
    """

    def __init__(self, max_attempts: Optional[int] = None, retry_delay: Optional[float] = None):
        self.max_attempts = max_attempts or config.TXN_MAX_ATTEMPTS
        self.retry_delay = config.TXN_RETRY_DELAY if retry_delay is None else retry_delay

    # -------------------------------------------------------------------------
    # Single-document and query operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_document(self, collection: str, document_id: str) -> Dict[str, Any]:
        """Fetch one document, raising NotFoundError if absent"""

    @abstractmethod
    async def query_documents(self, collection: str, filters: Filters) -> List[Dict[str, Any]]:
        """Return all documents whose fields equal every (field, value) filter"""

    @abstractmethod
    async def insert_document(
        self, collection: str, data: Dict[str, Any], document_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Insert a document and return it with its id"""

    @abstractmethod
    async def update_document(self, collection: str, document_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Merge top-level fields into a document, raising NotFoundError if absent"""

    @abstractmethod
    async def delete_document(self, collection: str, document_id: str) -> bool:
        """Delete a document. Returns False if it did not exist"""

    @abstractmethod
    async def batch_write(self, operations: List[WriteOperation]) -> None:
        """Apply all operations atomically (all or nothing)"""

    async def close(self) -> None:
        """Release resources held by the store"""

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def _run_once(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run fn in a single transaction attempt

        Raises TransactionConflict if the attempt cannot commit.
        """

    async def run_transaction(
        self,
        fn: Callable[[Transaction], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> T:
        """Run fn as an atomic read-modify-write with bounded conflict retries

        Args:
            fn: Async callback receiving a Transaction
            max_attempts: Override the store's configured attempt bound

        Returns:
            Whatever fn returned on the attempt that committed

        Raises:
            ConflictError: every attempt lost a race
        """
        attempts = max_attempts or self.max_attempts
        last_conflict: Optional[TransactionConflict] = None

        for attempt in range(1, attempts + 1):
            try:
                return await self._run_once(fn)
            except TransactionConflict as e:
                last_conflict = e
                metrics.transaction_conflicts.inc()
                logger.warning(
                    "transaction conflict",
                    attempt=attempt,
                    max_attempts=attempts,
                    collection=e.collection,
                    document_id=e.document_id,
                )
                if attempt < attempts:
                    await asyncio.sleep(self._backoff_delay(attempt))

        metrics.transaction_failures.inc()
        logger.error("transaction retries exhausted", attempts=attempts, error=str(last_conflict))
        raise ConflictError(
            "Transaction could not commit due to concurrent modification",
            attempts=attempts,
        )

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with +/-25% jitter"""
        if self.retry_delay <= 0:
            return 0.0
        delay = self.retry_delay * (2 ** (attempt - 1))
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return max(0.0, delay + jitter)
