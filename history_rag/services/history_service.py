"""
Browser History Service
Ingestion, querying, statistics and deletion of visited-page history

Provides the engine behind the /api/history routes:
- Ingestion pipeline (skip search pages -> extract -> classify -> store)
- Filter and similarity queries over one user's history
- Aggregate statistics (domains, topics, recency buckets)
- Deletion by id set or by user
"""

import asyncio
import logging
import os
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from history_rag.models.history import (
    BulkIngestResult,
    HistoryEntry,
    HistoryEntryMetadata,
    HistoryQuery,
    HistoryStats,
    SkippedVisit,
    UNCATEGORIZED_TOPIC,
    VisitCreate,
)
from history_rag.rag.components.qdrant_store import HistoryStoreError, StoredRecord
from history_rag.services.history_stats import compute_history_stats
from history_rag.services.topic_classifier import EXCERPT_CHARS
from history_rag.services.url_classifier import is_search_engine_url, split_url

logger = logging.getLogger(__name__)

OPTIONAL_METADATA_FIELDS = ("device_id", "referrer", "visit_duration")


class BrowserHistoryService:
    """
    Service for browser history management on a vector index.

    Collaborators:
    - store: index store (ensure_collection, add, get_filtered, query_similar, count, delete)
    - extractor: async extract(url, timeout_ms) -> str, never raises
    - classifier: async classify(title, excerpt) -> str, never raises

    Features:
    - Lazy, idempotent collection initialization guarded by a single lock
    - Search engine result pages skipped before any network work
    - Degraded ingestion (empty content / "Uncategorized") instead of failure
    - User-scoped queries, stats and deletes (no cross-user access)
    """

    DEFAULT_QUERY_LIMIT = 100
    EXTRACTION_TIMEOUT_MS = 10000
    BULK_CONCURRENCY = 4

    def __init__(
        self,
        store,
        extractor,
        classifier,
        clock: Callable[[], datetime] = datetime.now,
        extraction_timeout_ms: int = EXTRACTION_TIMEOUT_MS,
        bulk_concurrency: int = BULK_CONCURRENCY,
    ):
        """
        Initialize browser history service.

        Args:
            store: Index store holding history entries
            extractor: Page content extractor
            classifier: Page topic classifier
            clock: Source of "now" for statistics buckets
            extraction_timeout_ms: Time budget per page extraction
            bulk_concurrency: Max concurrent ingestions in store_visits()
        """
        self.store = store
        self.extractor = extractor
        self.classifier = classifier
        self.clock = clock
        self.extraction_timeout_ms = extraction_timeout_ms
        self.bulk_concurrency = max(1, bulk_concurrency)

        self.initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Get or create the history collection.

        Safe to call concurrently: only the first caller touches the store.

        Raises:
            HistoryStoreError: If the collection cannot be created
        """
        if self.initialized:
            return

        async with self._init_lock:
            if self.initialized:
                return

            try:
                self.store.ensure_collection()
            except HistoryStoreError as e:
                logger.error(f"Failed to initialize browser history service: {e}")
                raise

            self.initialized = True
            logger.info("Browser history vector database initialized")

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def store_visit(
        self,
        url: str,
        title: str,
        timestamp: int,
        user_id: str,
        device_id: Optional[str] = None,
        referrer: Optional[str] = None,
        visit_duration: Optional[int] = None,
    ) -> Union[HistoryEntry, SkippedVisit]:
        """
        Ingest a visited page.

        Args:
            url: Visited URL
            title: Page title
            timestamp: Visit time in epoch milliseconds
            user_id: Owning user
            device_id, referrer, visit_duration: Optional client metadata

        Returns:
            The stored HistoryEntry, or SkippedVisit for search engine pages

        Raises:
            ValueError: If a required field is missing or invalid
            HistoryStoreError: If the store write (or initialization) fails
        """
        self._validate_visit(url, title, timestamp, user_id)

        if is_search_engine_url(url):
            logger.info(f"Skipping search engine URL: {url}")
            return SkippedVisit(url=url)

        await self.initialize()

        entry_id = str(uuid.uuid4())

        content = await self._extract_content(url)
        topic = await self._classify_topic(title, content)
        domain, path = split_url(url)

        optional_metadata = {
            "device_id": device_id,
            "referrer": referrer,
            "visit_duration": visit_duration,
        }
        optional_metadata = {key: value for key, value in optional_metadata.items() if value is not None}

        entry = HistoryEntry(
            id=entry_id,
            url=url,
            title=title,
            timestamp=timestamp,
            content=content,
            topic=topic,
            user_id=user_id,
            metadata=HistoryEntryMetadata(domain=domain, path=path, **optional_metadata),
        )

        metadata = {
            "url": url,
            "title": title,
            "timestamp": timestamp,
            "topic": topic,
            "user_id": user_id,
            "domain": domain,
            "path": path,
            **optional_metadata,
        }

        try:
            self.store.add(entry_id, metadata, content)
        except HistoryStoreError as e:
            logger.error(f"Failed to store browser history entry: {e}")
            raise

        logger.info(f"Stored browser history entry: {title[:80]} (id={entry_id}, topic={topic})")
        return entry

    async def store_visits(self, visits: List[Union[VisitCreate, Dict[str, Any]]]) -> BulkIngestResult:
        """
        Ingest many visits concurrently.

        Each visit is independent: invalid visits and store failures are
        logged and counted as failed, never abort the batch.

        Args:
            visits: Visits to ingest, as VisitCreate or raw request dicts

        Returns:
            BulkIngestResult with total/successful/skipped/failed counts
        """
        semaphore = asyncio.Semaphore(self.bulk_concurrency)

        async def ingest_one(visit):
            # pydantic.ValidationError is a ValueError, counted like any other failure
            visit = VisitCreate.model_validate(visit)
            async with semaphore:
                return await self.store_visit(**visit.model_dump())

        results = await asyncio.gather(*(ingest_one(visit) for visit in visits), return_exceptions=True)

        summary = BulkIngestResult(total=len(visits))
        for visit, result in zip(visits, results):
            if isinstance(result, SkippedVisit):
                summary.skipped += 1
            elif isinstance(result, BaseException):
                summary.failed += 1
                url = visit.get("url") if isinstance(visit, dict) else visit.url
                logger.warning(f"Bulk ingestion failed for {url}: {result}")
            else:
                summary.successful += 1

        logger.info(
            f"Bulk ingestion complete: {summary.successful} stored, "
            f"{summary.skipped} skipped, {summary.failed} failed (of {summary.total})"
        )
        return summary

    async def _extract_content(self, url: str) -> str:
        try:
            content = await self.extractor.extract(url, self.extraction_timeout_ms)
        except Exception as e:
            logger.warning(f"Content extraction failed for {url}, storing without content: {e}")
            return ""
        return content or ""

    async def _classify_topic(self, title: str, content: str) -> str:
        try:
            topic = await self.classifier.classify(title, content[:EXCERPT_CHARS])
        except Exception as e:
            logger.warning(f"Topic classification failed for '{title[:50]}': {e}")
            return UNCATEGORIZED_TOPIC
        return (topic or "").strip() or UNCATEGORIZED_TOPIC

    @staticmethod
    def _validate_visit(url: str, title: str, timestamp: int, user_id: str) -> None:
        if not url or not url.strip():
            raise ValueError("url must be non-empty")
        if not title or not title.strip():
            raise ValueError("title must be non-empty")
        if not user_id or not user_id.strip():
            raise ValueError("user_id must be non-empty")
        if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 0:
            raise ValueError(f"timestamp must be a non-negative integer (epoch ms), got {timestamp!r}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def build_filters(query: HistoryQuery) -> Dict[str, Any]:
        """
        Build the store filter for a history query.

        user_id equality is always present; timestamp bounds and topic
        membership are added when the query sets them.
        """
        filters: Dict[str, Any] = {"user_id": query.user_id}

        if query.time_range:
            bounds = {}
            if query.time_range.start is not None:
                bounds["$gte"] = query.time_range.start
            if query.time_range.end is not None:
                bounds["$lte"] = query.time_range.end
            if bounds:
                filters["timestamp"] = bounds

        if query.topics:
            filters["topic"] = {"$in": list(query.topics)}

        return filters

    async def query_history(self, query: HistoryQuery) -> List[HistoryEntry]:
        """
        Query one user's history.

        With query.similarity set, results are ranked by semantic similarity
        of page content to the probe text. Otherwise results are a plain
        filtered fetch in the store's natural order.

        Raises:
            HistoryStoreError: If the store query fails
        """
        await self.initialize()

        filters = self.build_filters(query)

        try:
            if query.similarity:
                records = self.store.query_similar(
                    query.similarity.text,
                    filters,
                    limit=query.limit or self.DEFAULT_QUERY_LIMIT,
                    offset=query.offset,
                    min_score=query.similarity.min_score,
                )
            else:
                records = self.store.get_filtered(filters, limit=query.limit, offset=query.offset)
        except HistoryStoreError as e:
            logger.error(f"Failed to query browser history: {e}")
            raise

        entries = [self._record_to_entry(record) for record in records]
        logger.info(
            f"History query for user_id={query.user_id} returned {len(entries)} entries "
            f"(similarity={'yes' if query.similarity else 'no'})"
        )
        return entries

    @staticmethod
    def _record_to_entry(record: StoredRecord) -> HistoryEntry:
        metadata = record.metadata
        return HistoryEntry(
            id=record.id,
            url=metadata.get("url", ""),
            title=metadata.get("title", ""),
            timestamp=int(metadata.get("timestamp") or 0),
            content=record.document or "",
            topic=metadata.get("topic") or UNCATEGORIZED_TOPIC,
            user_id=metadata.get("user_id", ""),
            metadata=HistoryEntryMetadata(
                domain=metadata.get("domain", ""),
                path=metadata.get("path", ""),
                **{key: metadata[key] for key in OPTIONAL_METADATA_FIELDS if metadata.get(key) is not None},
            ),
            score=record.score,
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_stats(self, user_id: str, now: Optional[datetime] = None) -> HistoryStats:
        """
        Compute history statistics for a user.

        Scans all of the user's entry metadata (no page content).

        Args:
            user_id: Owning user
            now: Reference time for recency buckets (defaults to the service clock)

        Raises:
            ValueError: If user_id is empty
            HistoryStoreError: If the scan fails
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id must be non-empty")

        await self.initialize()

        try:
            records = self.store.get_filtered({"user_id": user_id}, include_documents=False)
        except HistoryStoreError as e:
            logger.error(f"Failed to get history statistics: {e}")
            raise

        stats = compute_history_stats((record.metadata for record in records), now or self.clock())
        logger.info(
            f"Computed history stats for user_id={user_id}: {stats.total_entries} entries, "
            f"{len(stats.domains)} domains, {len(stats.topics)} topics"
        )
        return stats

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_entries(self, user_id: str, entry_ids: Optional[List[str]] = None) -> int:
        """
        Delete history entries for a user.

        Security: deletion is always scoped to user_id, so ids belonging to
        another user are left untouched.

        Args:
            user_id: Owning user
            entry_ids: Entry ids to delete (None or empty = all of the user's entries);
                ids that are not UUIDs match nothing

        Returns:
            Number of entries deleted

        Raises:
            ValueError: If user_id is empty
            HistoryStoreError: If the count or delete fails
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id must be non-empty")

        ids = None
        if entry_ids:
            ids = self._normalize_entry_ids(entry_ids)
            if not ids:
                # No id can match a stored point, so nothing to delete
                logger.info(f"Deleted 0 of {len(entry_ids)} requested history entries for user_id={user_id}")
                return 0

        await self.initialize()

        filters = {"user_id": user_id}

        try:
            count = self.store.count(filters, ids=ids)
            if count:
                self.store.delete(filters, ids=ids)
        except HistoryStoreError as e:
            logger.error(f"Failed to delete history entries: {e}")
            raise

        if ids is not None:
            logger.info(f"Deleted {count} of {len(ids)} requested history entries for user_id={user_id}")
        else:
            logger.info(f"Deleted all {count} history entries for user_id={user_id}")

        return count

    @staticmethod
    def _normalize_entry_ids(entry_ids: List[str]) -> List[str]:
        """
        Canonical UUID strings for the requested ids.

        Entry ids are always uuid4, so ids that do not parse as UUIDs are
        treated as nonexistent and dropped.
        """
        ids = []
        for entry_id in entry_ids:
            try:
                canonical = str(uuid.UUID(str(entry_id).strip()))
            except ValueError:
                logger.info(f"Ignoring non-UUID history entry id: {entry_id}")
                continue
            if canonical not in ids:
                ids.append(canonical)
        return ids


def build_history_service() -> BrowserHistoryService:
    """
    Build a BrowserHistoryService from environment configuration.

    Reads QDRANT_*, DEEPINFRA_API_KEY, EMBEDDING_*, OPENROUTER_*,
    CONTENT_EXTRACTION_TIMEOUT_MS and HISTORY_BULK_CONCURRENCY.
    """
    from history_rag.rag.components.deepinfra_embedder import DeepInfraEmbedder
    from history_rag.rag.components.qdrant_store import QdrantHistoryStore
    from history_rag.services.content_extractor import HttpContentExtractor
    from history_rag.services.topic_classifier import OpenRouterTopicClassifier

    extraction_timeout_ms = int(
        os.getenv("CONTENT_EXTRACTION_TIMEOUT_MS", str(BrowserHistoryService.EXTRACTION_TIMEOUT_MS))
    )

    return BrowserHistoryService(
        store=QdrantHistoryStore.from_env(embedder=DeepInfraEmbedder()),
        extractor=HttpContentExtractor(default_timeout_ms=extraction_timeout_ms),
        classifier=OpenRouterTopicClassifier(),
        extraction_timeout_ms=extraction_timeout_ms,
        bulk_concurrency=int(
            os.getenv("HISTORY_BULK_CONCURRENCY", str(BrowserHistoryService.BULK_CONCURRENCY))
        ),
    )
