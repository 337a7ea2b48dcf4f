"""
Qdrant-backed index store for browser history entries.

Each history entry is one point: the point id is the entry id, the vector is
the embedding of the page content, and the payload holds the entry metadata
plus the extracted content under "document".

Filters are passed in a store-neutral form and translated to Qdrant filters:

    {
        "user_id": "u1",                                # equality
        "timestamp": {"$gte": 1000, "$lte": 2000},      # inclusive range
        "topic": {"$in": ["Technology", "News"]},       # set membership
    }
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient, models

logger = logging.getLogger(__name__)

DOCUMENT_KEY = "document"

# Payload fields queried by every history operation
INDEXED_FIELDS = {
    "user_id": models.PayloadSchemaType.KEYWORD,
    "topic": models.PayloadSchemaType.KEYWORD,
    "timestamp": models.PayloadSchemaType.INTEGER,
}

SCROLL_PAGE_SIZE = 256


class HistoryStoreError(RuntimeError):
    """Raised when the index store rejects or fails an operation."""
    pass


@dataclass
class StoredRecord:
    """A point read back from the store."""

    id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    document: str = ""
    score: Optional[float] = None


class QdrantHistoryStore:
    """
    Index store for history entries on a single Qdrant collection.

    Features:
    - Idempotent get-or-create of the collection with payload indexes
    - Metadata-filtered scans (paginated scroll)
    - Embedding similarity queries with metadata pre-filter
    - Filtered count and delete
    """

    def __init__(
        self,
        client: QdrantClient,
        embedder,
        collection_name: str = "browser_history",
    ):
        """
        Initialize history store.

        Args:
            client: Qdrant client (remote or local mode)
            embedder: Object with embed_query(text) and embed_passages(texts)
                and an embedding_dim attribute
            collection_name: Qdrant collection name
        """
        self.client = client
        self.embedder = embedder
        self.collection_name = collection_name

    @classmethod
    def from_env(cls, embedder) -> "QdrantHistoryStore":
        """Build a store from QDRANT_URL, QDRANT_API_KEY and QDRANT_COLLECTION."""
        client = QdrantClient(
            url=os.getenv("QDRANT_URL", "http://localhost:6333"),
            api_key=os.getenv("QDRANT_API_KEY") or None,
        )
        return cls(
            client=client,
            embedder=embedder,
            collection_name=os.getenv("QDRANT_COLLECTION", "browser_history"),
        )

    # ------------------------------------------------------------------
    # Collection lifecycle
    # ------------------------------------------------------------------

    def ensure_collection(self) -> None:
        """
        Get or create the history collection.

        Raises:
            HistoryStoreError: If Qdrant is unreachable or creation fails
        """
        try:
            if self.client.collection_exists(self.collection_name):
                logger.info(f"Using existing Qdrant collection: {self.collection_name}")
                return

            self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=models.VectorParams(
                    size=self.embedder.embedding_dim,
                    distance=models.Distance.COSINE,
                ),
            )
            for field_name, schema in INDEXED_FIELDS.items():
                self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema=schema,
                )

            logger.info(
                f"Created Qdrant collection: {self.collection_name} "
                f"(dim={self.embedder.embedding_dim}, distance=cosine)"
            )
        except Exception as e:
            raise HistoryStoreError(f"Failed to initialize collection '{self.collection_name}': {e}") from e

    def health_check(self) -> Dict[str, Any]:
        """Report collection status. Never raises."""
        try:
            info = self.client.get_collection(self.collection_name)
            return {
                "status": "healthy",
                "collection": self.collection_name,
                "points_count": info.points_count or 0,
            }
        except Exception as e:
            logger.error(f"Qdrant health check failed: {e}")
            return {
                "status": "unhealthy",
                "collection": self.collection_name,
                "points_count": 0,
                "error": str(e),
            }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, entry_id: str, metadata: Dict[str, Any], document: str) -> None:
        """
        Store one entry.

        The vector is the embedding of the document; pages with no extracted
        text are embedded from their title so they stay reachable.

        Raises:
            HistoryStoreError: If embedding or upsert fails
        """
        embed_text = document or metadata.get("title") or metadata.get("url", "")

        try:
            vector = self.embedder.embed_passages([embed_text])[0]
            self.client.upsert(
                collection_name=self.collection_name,
                points=[
                    models.PointStruct(
                        id=entry_id,
                        vector=vector,
                        payload={**metadata, DOCUMENT_KEY: document},
                    )
                ],
                wait=True,
            )
        except Exception as e:
            raise HistoryStoreError(f"Failed to store entry {entry_id}: {e}") from e

    def delete(self, filters: Dict[str, Any], ids: Optional[List[str]] = None) -> None:
        """
        Delete points matching filters, optionally restricted to ids.

        Raises:
            HistoryStoreError: If the delete fails
        """
        qdrant_filter = self.build_filter(filters, ids=ids)

        try:
            self.client.delete(
                collection_name=self.collection_name,
                points_selector=models.FilterSelector(filter=qdrant_filter),
                wait=True,
            )
        except Exception as e:
            raise HistoryStoreError(f"Failed to delete entries: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self, filters: Dict[str, Any], ids: Optional[List[str]] = None) -> int:
        """Exact count of points matching filters (and ids, if given)."""
        try:
            result = self.client.count(
                collection_name=self.collection_name,
                count_filter=self.build_filter(filters, ids=ids),
                exact=True,
            )
            return result.count
        except Exception as e:
            raise HistoryStoreError(f"Failed to count entries: {e}") from e

    def get_filtered(
        self,
        filters: Dict[str, Any],
        limit: Optional[int] = None,
        offset: int = 0,
        include_documents: bool = True,
    ) -> List[StoredRecord]:
        """
        Fetch points matching filters in the store's natural order.

        Args:
            filters: Store-neutral filter dict
            limit: Max records to return (None = all)
            offset: Number of leading matches to skip
            include_documents: Whether to return page content

        Returns:
            List of StoredRecord

        Raises:
            HistoryStoreError: If the scroll fails
        """
        qdrant_filter = self.build_filter(filters)
        wanted = None if limit is None else offset + limit
        payload_selector = True if include_documents else models.PayloadSelectorExclude(exclude=[DOCUMENT_KEY])

        records: List[StoredRecord] = []
        next_page = None

        try:
            while True:
                page_size = SCROLL_PAGE_SIZE if wanted is None else min(SCROLL_PAGE_SIZE, wanted - len(records))
                points, next_page = self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=qdrant_filter,
                    limit=page_size,
                    offset=next_page,
                    with_payload=payload_selector,
                    with_vectors=False,
                )
                records.extend(self._to_record(point, include_documents) for point in points)

                if next_page is None or (wanted is not None and len(records) >= wanted):
                    break
        except Exception as e:
            raise HistoryStoreError(f"Failed to fetch entries: {e}") from e

        if wanted is None:
            return records[offset:]
        return records[offset:wanted]

    def query_similar(
        self,
        text: str,
        filters: Dict[str, Any],
        limit: int,
        offset: int = 0,
        min_score: Optional[float] = None,
    ) -> List[StoredRecord]:
        """
        Rank points by similarity to a text probe, pre-filtered by metadata.

        Raises:
            HistoryStoreError: If embedding or the query fails
        """
        try:
            vector = self.embedder.embed_query(text)
            response = self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                query_filter=self.build_filter(filters),
                limit=limit,
                offset=offset or None,
                score_threshold=min_score,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            raise HistoryStoreError(f"Similarity query failed: {e}") from e

        return [self._to_record(point, True) for point in response.points]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def build_filter(filters: Dict[str, Any], ids: Optional[List[str]] = None) -> models.Filter:
        """
        Translate a store-neutral filter dict into a Qdrant filter.

        Supported operators: plain value (equality), $gte/$lte (range),
        $in (membership).

        Raises:
            ValueError: On an unsupported operator
        """
        conditions: List[Any] = []

        for key, value in filters.items():
            if isinstance(value, dict):
                unknown = set(value) - {"$gte", "$lte", "$in"}
                if unknown:
                    raise ValueError(f"Unsupported filter operator(s) for '{key}': {sorted(unknown)}")

                if "$gte" in value or "$lte" in value:
                    conditions.append(
                        models.FieldCondition(
                            key=key,
                            range=models.Range(gte=value.get("$gte"), lte=value.get("$lte")),
                        )
                    )
                if "$in" in value:
                    conditions.append(
                        models.FieldCondition(key=key, match=models.MatchAny(any=list(value["$in"])))
                    )
            else:
                conditions.append(models.FieldCondition(key=key, match=models.MatchValue(value=value)))

        if ids:
            conditions.append(models.HasIdCondition(has_id=list(ids)))

        return models.Filter(must=conditions)

    @staticmethod
    def _to_record(point, include_document: bool) -> StoredRecord:
        payload = dict(point.payload or {})
        document = payload.pop(DOCUMENT_KEY, "") or ""
        return StoredRecord(
            id=str(point.id),
            metadata=payload,
            document=document if include_document else "",
            score=getattr(point, "score", None),
        )
