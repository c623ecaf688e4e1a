"""
Result caching with TTL, stale reads and single-flight fetch coordination.
"""
from .store import ResultCache
from .coalescer import InFlightCall, SingleFlightCoordinator

__all__ = [
    "ResultCache",
    "InFlightCall",
    "SingleFlightCoordinator",
]
