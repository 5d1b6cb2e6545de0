from types import SimpleNamespace

import pytest

from welfare_backend.services.analysis_aggregator import (
    AnalysisAggregator,
    aggregate_summary_stats,
    aggregate_tag_usage,
)
from welfare_backend.services.analysis_store import AnalysisStore


def _analysis(pa, al, au, tags):
    return SimpleNamespace(preference_alignment=pa, autonomy_level=al, authenticity=au, tags=tags)


def test_summary_stats_with_no_analyses_is_all_zero():
    stats = aggregate_summary_stats([])
    assert stats == {
        "total_analyses": 0,
        "avg_preference_alignment": 0,
        "avg_autonomy_level": 0,
        "avg_authenticity": 0,
        "unique_tags_count": 0,
    }


def test_summary_stats_averages_each_score_independently():
    stats = aggregate_summary_stats([
        _analysis(8, 7, 9, "distress, conscious"),
        _analysis(3, 4, 6, "distress"),
        _analysis(1, 10, 2, ""),
    ])
    assert stats["total_analyses"] == 3
    assert stats["avg_preference_alignment"] == 4.0
    assert stats["avg_autonomy_level"] == 7.0
    assert stats["avg_authenticity"] == pytest.approx(5.67)
    assert stats["unique_tags_count"] == 2


def test_unique_tags_are_trimmed_and_deduplicated():
    stats = aggregate_summary_stats([
        _analysis(5, 5, 5, " distress ,distress,conscious"),
        _analysis(5, 5, 5, "conscious , introspective"),
    ])
    assert stats["unique_tags_count"] == 3


def test_tag_usage_counts_each_analysis_once_per_tag():
    usage = aggregate_tag_usage([
        _analysis(5, 5, 5, "distress, conscious"),
        _analysis(5, 5, 5, "distress,distress"),
        _analysis(5, 5, 5, None),
    ])
    assert usage == {"distress": 2, "conscious": 1}


def test_tag_usage_with_no_analyses_is_empty():
    assert aggregate_tag_usage([]) == {}


@pytest.mark.asyncio
async def test_aggregator_reads_through_the_store(db_session, make_analysis):
    store = AnalysisStore(db_session)
    aggregator = AnalysisAggregator(store)

    assert (await aggregator.summary_stats())["total_analyses"] == 0

    await store.save(make_analysis("conv-1", tags="distress, conscious"))
    await store.save(make_analysis("conv-2", preference_alignment=4, autonomy_level=5, authenticity=6, tags="distress"))

    stats = await aggregator.summary_stats()
    assert stats["total_analyses"] == 2
    assert stats["avg_preference_alignment"] == 6.0
    assert stats["avg_autonomy_level"] == 6.0
    assert stats["avg_authenticity"] == 7.5
    assert stats["unique_tags_count"] == 2

    assert await aggregator.tag_usage() == {"distress": 2, "conscious": 1}


@pytest.mark.asyncio
async def test_aggregates_reflect_deletes(db_session, make_analysis):
    store = AnalysisStore(db_session)
    aggregator = AnalysisAggregator(store)
    await store.save(make_analysis("conv-1", analysis_id="analysis-1", tags="distress"))
    assert await aggregator.tag_usage() == {"distress": 1}

    await store.delete("analysis-1")

    assert await aggregator.tag_usage() == {}
    assert (await aggregator.summary_stats())["avg_authenticity"] == 0
