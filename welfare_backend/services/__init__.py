"""Persistence, search and aggregation services for the welfare research backend."""

from .analysis_aggregator import AnalysisAggregator
from .analysis_store import AnalysisStore
from .conversation_search import ConversationSearchIndex
from .conversation_store import ConversationStore

__all__ = [
    'AnalysisAggregator',
    'AnalysisStore',
    'ConversationSearchIndex',
    'ConversationStore',
]
