# Company sources behind the orchestration core

from .base import Fetcher
from .http import HttpCompanyFetcher
from .retries import RetryingFetch

__all__ = ["Fetcher", "HttpCompanyFetcher", "RetryingFetch"]
