from fastapi import APIRouter, Query, Response, status
from sqlalchemy.orm import Session

from models.ab_tests import (
    ABTestCreate, ABTestUpdate, ABTestResponse, ABTestOverviewResponse, ABTestListResponse,
    ABTestStatus, BatchDeleteRequest, BatchDeleteResponse,
)
from models.results import ABTestResults
from models.sessions import SessionListResponse, SessionResponse
from services import lifecycle, results
from services.cache import CacheClient
from api.depends import CLIENT_AUTH, DB_DEPENDENCY, CACHE_CLIENT, PAGINATION, Pagination

import logging

logger = logging.getLogger(__name__)

ab_test_router = APIRouter(
    prefix="/ab-tests",
    tags=["ab-tests"],
    dependencies=[CLIENT_AUTH], # CLIENT_AUTH is applied to all routes in this router
)


# POST /ab-tests
@ab_test_router.post("", response_model=ABTestResponse, status_code=status.HTTP_201_CREATED)
def create_ab_test_route(
    test_data: ABTestCreate,
    db: Session = DB_DEPENDENCY
):
    """Create a new A/B test in draft with variants and traffic split."""
    return lifecycle.create_test(db, test_data)


# GET /ab-tests?organization_id=...
@ab_test_router.get("", response_model=ABTestListResponse)
def list_ab_tests_route(
    organization_id: str,
    status_filter: ABTestStatus | None = Query(default=None, alias="status"),
    page: Pagination = PAGINATION,
    db: Session = DB_DEPENDENCY
):
    """List an organization's tests, newest first."""
    items, count = lifecycle.list_tests(
        db,
        organization_id=organization_id,
        status=status_filter.value if status_filter else None,
        limit=page.limit,
        offset=page.offset
    )
    return ABTestListResponse(
        data=[ABTestResponse.model_validate(t) for t in items], count=count, limit=page.limit, offset=page.offset
    )


# DELETE /ab-tests (batch)
@ab_test_router.delete("", response_model=BatchDeleteResponse)
def batch_delete_ab_tests_route(
    request: BatchDeleteRequest,
    db: Session = DB_DEPENDENCY,
    cache: CacheClient = CACHE_CLIENT
):
    """Delete several inactive tests of one organization."""
    outcomes = lifecycle.delete_tests(db, cache, request.organization_id, request.test_ids)
    successful = sum(1 for o in outcomes if o["success"])
    return BatchDeleteResponse(
        results=outcomes,
        total_attempted=len(outcomes),
        successful=successful,
        failed=len(outcomes) - successful
    )


# GET /ab-tests/{test_id}
@ab_test_router.get("/{test_id}", response_model=ABTestOverviewResponse)
def get_ab_test_route(
    test_id: int,
    db: Session = DB_DEPENDENCY
):
    """Get a test with per-variant session and conversion counts."""
    return lifecycle.get_test_overview(db, test_id)


# PUT /ab-tests/{test_id}
@ab_test_router.put("/{test_id}", response_model=ABTestResponse)
def update_ab_test_route(
    test_id: int,
    test_data: ABTestUpdate,
    db: Session = DB_DEPENDENCY,
    cache: CacheClient = CACHE_CLIENT
):
    return lifecycle.update_test(db, cache, test_id, test_data)


# DELETE /ab-tests/{test_id}
@ab_test_router.delete("/{test_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_ab_test_route(
    test_id: int,
    db: Session = DB_DEPENDENCY,
    cache: CacheClient = CACHE_CLIENT
):
    """Delete a draft or completed test and its sessions."""
    lifecycle.delete_test(db, cache, test_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# POST /ab-tests/{test_id}/start|pause|resume|stop
@ab_test_router.post("/{test_id}/start", response_model=ABTestResponse)
def start_ab_test_route(test_id: int, db: Session = DB_DEPENDENCY, cache: CacheClient = CACHE_CLIENT):
    return lifecycle.start_test(db, cache, test_id)


@ab_test_router.post("/{test_id}/pause", response_model=ABTestResponse)
def pause_ab_test_route(test_id: int, db: Session = DB_DEPENDENCY, cache: CacheClient = CACHE_CLIENT):
    return lifecycle.pause_test(db, cache, test_id)


@ab_test_router.post("/{test_id}/resume", response_model=ABTestResponse)
def resume_ab_test_route(test_id: int, db: Session = DB_DEPENDENCY, cache: CacheClient = CACHE_CLIENT):
    return lifecycle.resume_test(db, cache, test_id)


@ab_test_router.post("/{test_id}/stop", response_model=ABTestResponse)
def stop_ab_test_route(test_id: int, db: Session = DB_DEPENDENCY, cache: CacheClient = CACHE_CLIENT):
    """Complete the test, freezing its results and winner."""
    return lifecycle.stop_test(db, cache, test_id)


# GET /ab-tests/{test_id}/results
@ab_test_router.get("/{test_id}/results", response_model=ABTestResults)
def get_ab_test_results_route(
    test_id: int,
    cached: bool = False,
    db: Session = DB_DEPENDENCY,
    cache: CacheClient = CACHE_CLIENT
):
    """
    Per-variant conversion rates, confidence intervals, significance and
    recommendations, recomputed from the recorded sessions. With cached=true
    the latest summary from the monitoring task is returned when there is one.
    """
    if cached:
        summary = cache.get_results(test_id)
        if summary:
            logger.debug("results for test %d served from monitoring cache", test_id)
            return summary
    return results.calculate_results(db=db, test_id=test_id)


# GET /ab-tests/{test_id}/sessions
@ab_test_router.get("/{test_id}/sessions", response_model=SessionListResponse)
def list_ab_test_sessions_route(
    test_id: int,
    variant_id: str | None = None,
    converted: bool | None = None,
    page: Pagination = PAGINATION,
    db: Session = DB_DEPENDENCY
):
    items, count = lifecycle.list_sessions(
        db, test_id, variant_id=variant_id, converted=converted, limit=page.limit, offset=page.offset
    )
    return SessionListResponse(
        data=[SessionResponse.model_validate(s) for s in items], count=count, limit=page.limit, offset=page.offset
    )
