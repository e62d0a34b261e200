"""Base repository over the document gateway

All repositories inherit from BaseRepository and share:
- One gateway instance (memory or PostgreSQL)
- A collection name
- Model conversion helpers

Return Type Conventions
-----------------------
    get_X(id) -> Optional[T]
        Single entity lookup by key.
        Returns None if entity not found.

    list_Xs(...) -> List[T]
        Multiple entity retrieval with filters.
        Returns empty list [] if none match.

    *_in(txn, ...)
        Same lookup performed inside a caller's transaction. These raise
        NotFoundError instead of returning None, because the caller is
        about to mutate what it read.

    stage_X(txn, ...)
        Stage a write on the caller's transaction. Nothing is persisted
        until the transaction commits.
"""

from typing import Any, Dict, List, Type, TypeVar

from config import get_logger
from database.gateway import DocumentGateway, Filters
from database.models import DocumentModel
from exceptions import DatabaseError, NotFoundError

logger = get_logger(__name__).bind(component="repository")

M = TypeVar("M", bound=DocumentModel)


class BaseRepository:
    """Base class for document repositories

    Design Principles:
    - Gateway is passed in, not created
    - Transactions are owned by the caller (the vote service)
    - Repositories convert between documents and models, nothing more
    """

    collection: str = ""
    model: Type[DocumentModel] = DocumentModel

    def __init__(self, gateway: DocumentGateway):
        """Initialize repository with shared gateway

        Args:
            gateway: Document store shared across all repositories
        """
        self.gateway = gateway

    def _to_model(self, doc: Dict[str, Any]):
        try:
            return self.model.from_document(doc)
        except ValueError as e:
            # pydantic ValidationError is a ValueError subclass
            raise DatabaseError(
                f"Malformed {self.collection} document",
                {"document_id": doc.get("id"), "error": str(e)},
            )

    async def _get(self, document_id: str):
        try:
            doc = await self.gateway.get_document(self.collection, document_id)
        except NotFoundError:
            return None
        return self._to_model(doc)

    async def _query(self, filters: Filters) -> List[Any]:
        docs = await self.gateway.query_documents(self.collection, filters)
        return [self._to_model(doc) for doc in docs]

    async def _insert(self, entity: M) -> M:
        doc = await self.gateway.insert_document(self.collection, entity.to_document(), entity.id)
        return self._to_model(doc)
