"""Service layer for the effective ownership pipeline."""

from esf_eo.services.aggregation import AggregationRunner
from esf_eo.services.fetcher import FetchError, RetryingFetcher
from esf_eo.services.picks import PickProcessor
from esf_eo.services.standings import StandingsCollector

__all__ = [
    "AggregationRunner",
    "FetchError",
    "PickProcessor",
    "RetryingFetcher",
    "StandingsCollector",
]
