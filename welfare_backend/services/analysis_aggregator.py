"""Summary statistics and tag usage over all welfare analyses."""

from collections import Counter
from typing import Any, Dict, Iterable

from welfare_backend.config import AVERAGE_DECIMALS
from welfare_backend.services.analysis_store import AnalysisStore
from welfare_backend.services.tag_codec import parse_tags


def _average(values) -> float:
    # Mean rounded to AVERAGE_DECIMALS; 0.0 for an empty store.
    values = list(values)
    if not values:
        return 0.0
    return round(sum(values) / len(values), AVERAGE_DECIMALS)


def aggregate_summary_stats(analyses: Iterable[Any]) -> Dict[str, Any]:
    """Averages are 0 when there is nothing to average."""
    analyses = list(analyses)
    unique_tags = set()
    for analysis in analyses:
        unique_tags.update(parse_tags(analysis.tags))

    return {
        "total_analyses": len(analyses),
        "avg_preference_alignment": _average(a.preference_alignment for a in analyses),
        "avg_autonomy_level": _average(a.autonomy_level for a in analyses),
        "avg_authenticity": _average(a.authenticity for a in analyses),
        "unique_tags_count": len(unique_tags),
    }


def aggregate_tag_usage(analyses: Iterable[Any]) -> Dict[str, int]:
    """Count analyses per tag; an analysis counts at most once per tag."""
    usage: Counter = Counter()
    for analysis in analyses:
        usage.update(parse_tags(analysis.tags))
    return dict(usage.most_common())


class AnalysisAggregator:
    """
    Read-only full scans over the analysis store.

    Nothing is cached, so results always reflect the latest committed writes.
    """

    def __init__(self, analysis_store: AnalysisStore):
        self.store = analysis_store

    async def summary_stats(self) -> Dict[str, Any]:
        analyses = await self.store.fetch_all()
        return aggregate_summary_stats(analyses)

    async def tag_usage(self) -> Dict[str, int]:
        analyses = await self.store.fetch_all()
        return aggregate_tag_usage(analyses)
