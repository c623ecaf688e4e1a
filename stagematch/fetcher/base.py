"""Base fetcher abstraction for the external company source.

The orchestration core treats a fetcher as an opaque, blocking call:
one normalized query in, a sequence of company records out. Everything
about how the source is reached and parsed (site structure, filter
values per education track) stays behind this boundary.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from ..models import CompanyRecord, Query


class Fetcher(ABC):
    """
    Abstract base class for company sources.

    Implementations signal failures with exceptions:
    - TransientSourceError: network trouble, timeouts, throttling (retried)
    - PermanentSourceError: unexpected response shape (not retried)

    An empty sequence is a valid answer, not a failure.
    """

    @abstractmethod
    def fetch(self, query: Query) -> Sequence[CompanyRecord]:
        """
        Look up companies for a query.

        Args:
            query: The normalized query

        Returns:
            Company records in source order
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this source."""
        pass
