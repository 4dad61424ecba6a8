"""
Market-data fetchers for multiple API sources.

This module provides a unified interface for fetching ETH and BTC prices
from various exchanges and aggregator APIs.

Usage:
    from sentinel.src.fetchers import get_fetcher, get_available_fetchers

    # Get list of available fetchers
    available = get_available_fetchers()
    # ['coinbase', 'coincap', 'coingecko', 'kraken']

    # Create a fetcher instance
    fetcher = get_fetcher("coingecko")
    reading = await fetcher.fetch()

    # For fetchers accepting API keys
    fetcher = get_fetcher("coincap", api_key="your-api-key")
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    get_available_fetchers,
    get_fetcher,
    register_fetcher,
)

# Import all fetcher implementations to trigger registration
from .coinbase import CoinbaseFetcher
from .coincap import CoinCapFetcher
from .coingecko import CoinGeckoFetcher
from .kraken import KrakenFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "FetcherError",
    "FetcherConfigError",
    "FetcherHTTPError",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "FETCHER_REGISTRY",
    # Fetcher implementations
    "CoinbaseFetcher",
    "CoinCapFetcher",
    "CoinGeckoFetcher",
    "KrakenFetcher",
]
