# Internship company search
# Validation → rate limiting → cache → single-flight fetch with retries → stale fallback

from .orchestrator import Orchestrator, get_orchestrator, search
from .responses import SearchResult

__all__ = ["Orchestrator", "get_orchestrator", "search", "SearchResult"]
