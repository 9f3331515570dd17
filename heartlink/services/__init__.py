"""
Core services for the application.

This package contains the identity store, the relationship graph, the
heart-rate aggregation engine and the facade that exposes them.
"""

from .aggregation import AggregationEngine
from .facade import HeartlinkService
from .identity import IdentityStore
from .relationships import RelationshipGraph
from .results import Result

__all__ = [
    "AggregationEngine",
    "HeartlinkService",
    "IdentityStore",
    "RelationshipGraph",
    "Result",
]
