"""
Browser History API Routes

Endpoints:
- POST   /api/history               → Store a visited page (201, or 200 when skipped)
- POST   /api/history/bulk          → Store many visited pages
- POST   /api/history/query         → Filter / similarity query over a user's history
- GET    /api/history/stats/{user}  → Aggregate statistics for a user
- DELETE /api/history/{user}?ids=   → Delete entries by id, or all of a user's entries
- GET    /api/history/health        → Index store health

A search engine results page is answered with HTTP 200 {"skipped": true}
so clients can tell an intentional skip from a failed write (HTTP 500).
"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from history_rag.middleware.rate_limiter import enforce_rate_limit
from history_rag.models.history import (
    BulkIngestResult,
    BulkVisitRequest,
    DeleteResult,
    HistoryEntry,
    HistoryQuery,
    HistoryStats,
    SkippedVisit,
    VisitCreate,
)
from history_rag.rag.components.qdrant_store import HistoryStoreError
from history_rag.services.history_service import BrowserHistoryService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/history",
    tags=["Browser History"],
    dependencies=[Depends(enforce_rate_limit)],
)


def get_history_service(request: Request) -> BrowserHistoryService:
    """
    History service dependency.

    The service is built once in the application lifespan and kept on
    app.state; tests override this dependency.
    """
    service = getattr(request.app.state, "history_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "ServiceUnavailable", "message": "Browser history service not configured"},
        )
    return service


def _validation_error(request_id: str, e: ValueError) -> HTTPException:
    logger.warning(f"[{request_id}] Validation error: {str(e)}")
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "ValidationError", "message": str(e)},
    )


def _store_failure(request_id: str, action: str, e: Exception) -> HTTPException:
    logger.error(f"[{request_id}] Failed to {action}: {str(e)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "StoreFailure", "message": f"Failed to {action}"},
    )


@router.post(
    "",
    response_model=HistoryEntry,
    status_code=201,
    summary="Store a browser history entry",
    description="Extracts page content, classifies its topic and stores it in the vector index. "
    "Search engine result pages are skipped (HTTP 200 with skipped=true).",
    responses={
        200: {"description": "Search engine URL skipped", "model": SkippedVisit},
        400: {"description": "Missing or invalid fields"},
        500: {"description": "Entry could not be stored"},
    },
)
async def store_history_entry(
    visit: VisitCreate,
    service: BrowserHistoryService = Depends(get_history_service),
):
    request_id = str(uuid.uuid4())
    logger.info(f"[{request_id}] POST /api/history - user_id={visit.user_id} url={visit.url}")

    try:
        result = await service.store_visit(**visit.model_dump())
    except ValueError as e:
        raise _validation_error(request_id, e)
    except HistoryStoreError as e:
        raise _store_failure(request_id, "store browser history", e)

    if isinstance(result, SkippedVisit):
        logger.info(f"[{request_id}] Search engine URL skipped: {visit.url}")
        return JSONResponse(status_code=status.HTTP_200_OK, content=result.model_dump())

    return result


@router.post(
    "/bulk",
    response_model=BulkIngestResult,
    status_code=200,
    summary="Bulk store browser history entries",
    description="Stores each entry independently; failures and skips are counted, not raised.",
)
async def bulk_store_history_entries(
    body: BulkVisitRequest,
    service: BrowserHistoryService = Depends(get_history_service),
) -> BulkIngestResult:
    request_id = str(uuid.uuid4())
    logger.info(f"[{request_id}] POST /api/history/bulk - {len(body.entries)} entries")

    return await service.store_visits(body.entries)


@router.post(
    "/query",
    response_model=List[HistoryEntry],
    status_code=200,
    summary="Query browser history",
    description="Filter by time range and topics; with `similarity.text`, rank by semantic similarity.",
)
async def query_history(
    query: HistoryQuery,
    service: BrowserHistoryService = Depends(get_history_service),
) -> List[HistoryEntry]:
    request_id = str(uuid.uuid4())
    logger.info(f"[{request_id}] POST /api/history/query - user_id={query.user_id}")

    try:
        return await service.query_history(query)
    except ValueError as e:
        raise _validation_error(request_id, e)
    except HistoryStoreError as e:
        raise _store_failure(request_id, "query browser history", e)


@router.get(
    "/health",
    summary="History index health",
    description="Reports Qdrant collection status and point count.",
)
async def history_health(
    service: BrowserHistoryService = Depends(get_history_service),
):
    health = service.store.health_check()
    health["initialized"] = service.initialized
    status_code = status.HTTP_200_OK if health["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=health)


@router.get(
    "/stats/{user_id}",
    response_model=HistoryStats,
    status_code=200,
    summary="Browser history statistics",
    description="Domain counts, topic summaries and recency buckets over all of a user's entries.",
)
async def get_history_stats(
    user_id: str,
    service: BrowserHistoryService = Depends(get_history_service),
) -> HistoryStats:
    request_id = str(uuid.uuid4())
    logger.info(f"[{request_id}] GET /api/history/stats/{user_id}")

    try:
        return await service.get_stats(user_id)
    except ValueError as e:
        raise _validation_error(request_id, e)
    except HistoryStoreError as e:
        raise _store_failure(request_id, "get browser history statistics", e)


@router.delete(
    "/{user_id}",
    response_model=DeleteResult,
    status_code=200,
    summary="Delete browser history entries",
    description="Deletes the comma-separated `ids` for the user, or all of the user's entries "
    "when `ids` is omitted. Entries of other users are never deleted.",
)
async def delete_history_entries(
    user_id: str,
    ids: Optional[str] = Query(None, description="Comma-separated entry ids"),
    service: BrowserHistoryService = Depends(get_history_service),
) -> DeleteResult:
    request_id = str(uuid.uuid4())
    logger.info(f"[{request_id}] DELETE /api/history/{user_id} - ids={ids or 'ALL'}")

    # Blank ids stay in the list so "?ids=," never widens to a delete-all
    entry_ids = [entry_id.strip() for entry_id in ids.split(",")] if ids else None

    try:
        count = await service.delete_entries(user_id, entry_ids)
    except ValueError as e:
        raise _validation_error(request_id, e)
    except HistoryStoreError as e:
        raise _store_failure(request_id, "delete browser history", e)

    return DeleteResult(success=True, message=f"Deleted {count} history entries", count=count)
