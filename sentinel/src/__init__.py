"""
Sentinel Oracle - Off-Chain Decision Module

This module turns multi-source market data into persisted decisions:
- SourceReading: One source's ETH/BTC observation
- FetchCoordinator: Concurrent fetching with per-source timeouts
- PriceAggregator: Cross-source averages, deviation and 24h change
- DecisionEngine: Threshold-based market condition scoring
- RequestLedger: Request lifecycle (Pending, Fulfilled, Errored)
- StateStore: Persisted state interface (in-memory and contract backends)
- SentinelOracle: Main orchestrator for request/poll decision cycles
- fetchers: Modular price fetcher implementations
"""

from .DecisionEngine import DecisionEngine, DecisionResult
from .FetchCoordinator import FetchCoordinator
from .PriceAggregator import NoSourcesAvailable, PriceAggregator, PriceSnapshot
from .RequestLedger import OracleRequest, RequestLedger, RequestState
from .SentinelOracle import RequestStatus, SentinelOracle
from .SourceReading import SourceReading
from .StateStore import (
    InvalidInput,
    RateLimited,
    StateStore,
    StateStoreError,
    Statistics,
    StoredDecision,
    Unauthorized,
)
from .StateStoreMemory import StateStoreMemory

__all__ = [
    "DecisionEngine",
    "DecisionResult",
    "FetchCoordinator",
    "InvalidInput",
    "NoSourcesAvailable",
    "OracleRequest",
    "PriceAggregator",
    "PriceSnapshot",
    "RateLimited",
    "RequestLedger",
    "RequestState",
    "RequestStatus",
    "SentinelOracle",
    "SourceReading",
    "StateStore",
    "StateStoreError",
    "StateStoreMemory",
    "Statistics",
    "StoredDecision",
    "Unauthorized",
]
