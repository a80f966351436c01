"""
Post-ingestion enrichment: external product matching.
"""

from .dispatcher import EnrichmentDispatcher, EnrichmentRunner, EnrichmentSummary
from .matcher import (
    HttpProductMatcher,
    Match,
    MatchResult,
    NullProductMatcher,
    ProductMatcher,
    create_matcher,
)

__all__ = [
    "EnrichmentDispatcher",
    "EnrichmentRunner",
    "EnrichmentSummary",
    "ProductMatcher",
    "HttpProductMatcher",
    "NullProductMatcher",
    "Match",
    "MatchResult",
    "create_matcher",
]
