"""
API endpoints for welfare analyses.

Provides endpoints for:
- Saving (upserting) the analysis of a conversation
- Fetching an analysis or probing whether one exists
- Listing the predefined tag vocabulary
- Deleting an analysis
- Summary statistics and tag usage across all analyses
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from welfare_backend.db_session import get_async_session
from welfare_backend.schemas import (
    AnalysisExistsResponse,
    AnalysisRecord,
    AnalysisResponse,
    DeleteAnalysisResponse,
    PredefinedTagsResponse,
    SaveAnalysisRequest,
    SaveAnalysisResponse,
    SummaryStatsResponse,
    TagUsageResponse,
)
from welfare_backend.services.analysis_aggregator import AnalysisAggregator
from welfare_backend.services.analysis_store import AnalysisStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/welfare-analyses", tags=["welfare-analyses"])


def get_analysis_store(db: AsyncSession = Depends(get_async_session)) -> AnalysisStore:
    return AnalysisStore(db)


def get_aggregator(store: AnalysisStore = Depends(get_analysis_store)) -> AnalysisAggregator:
    return AnalysisAggregator(store)


@router.post("", response_model=SaveAnalysisResponse)
async def save_analysis(
    request: SaveAnalysisRequest,
    store: AnalysisStore = Depends(get_analysis_store),
):
    """
    Save a welfare analysis, replacing any earlier one for the same conversation.

    Args:
        request: Full analysis record
        store: Analysis store bound to the request session

    Returns:
        SaveAnalysisResponse with the stored analysis id and save time
    """
    logger.info(
        "Saving welfare analysis %s for conversation %s (analyst: %s)",
        request.analysis_id, request.conversation_id, request.analyst_name,
    )
    result = await store.save(request.model_dump())
    return SaveAnalysisResponse(**result)


@router.get("/tags", response_model=PredefinedTagsResponse)
async def list_predefined_tags(store: AnalysisStore = Depends(get_analysis_store)):
    """Suggested tags; any tag string is accepted on save."""
    result = await store.list_predefined_tags()
    return PredefinedTagsResponse(**result)


@router.get("/stats/summary", response_model=SummaryStatsResponse)
async def get_summary_stats(aggregator: AnalysisAggregator = Depends(get_aggregator)):
    """Totals, per-score averages and distinct tag count across all analyses."""
    stats = await aggregator.summary_stats()
    return SummaryStatsResponse(success=True, **stats)


@router.get("/stats/tag-usage", response_model=TagUsageResponse)
async def get_tag_usage(aggregator: AnalysisAggregator = Depends(get_aggregator)):
    """Number of analyses carrying each tag."""
    usage = await aggregator.tag_usage()
    return TagUsageResponse(success=True, tag_usage=usage)


@router.get(
    "/{conversation_id}/exists",
    response_model=AnalysisExistsResponse,
    response_model_exclude_none=True,
)
async def check_analysis_exists(
    conversation_id: str,
    store: AnalysisStore = Depends(get_analysis_store),
):
    result = await store.exists(conversation_id)
    return AnalysisExistsResponse(**result)


@router.get("/{conversation_id}", response_model=AnalysisResponse)
async def get_analysis(
    conversation_id: str,
    store: AnalysisStore = Depends(get_analysis_store),
):
    """Fetch the analysis of a conversation; ``analysis`` is null when there is none."""
    result = await store.fetch(conversation_id)

    analysis = result["analysis"]
    return AnalysisResponse(
        success=True,
        analysis=AnalysisRecord(**analysis) if analysis is not None else None,
    )


@router.delete("/{analysis_id}", response_model=DeleteAnalysisResponse)
async def delete_analysis(
    analysis_id: str,
    store: AnalysisStore = Depends(get_analysis_store),
):
    """Permanently delete an analysis by its analysis id."""
    logger.info("Deleting welfare analysis %s", analysis_id)
    result = await store.delete(analysis_id)
    return DeleteAnalysisResponse(**result)
