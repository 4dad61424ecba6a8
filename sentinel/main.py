#!/usr/bin/env python3
"""Sentinel Oracle.

Fetches ETH and BTC prices from multiple off-chain sources, scores market
conditions and persists the decision to the sentinel state store when the
score reaches the threshold.

Without a contract address and RPC URL the state lives in memory, which is
enough for local runs. Run with --help for the configuration options.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.DecisionEngine import DecisionEngine
from .src.RequestLedger import RequestLedger
from .src.SentinelOracle import SentinelOracle
from .src.StateStore import DEFAULT_THRESHOLD, StateStore
from .src.StateStoreContract import StateStoreContract
from .src.StateStoreMemory import StateStoreMemory
from .src.fetchers import get_available_fetchers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_api_keys(api_key_str: str | None) -> dict[str, str]:
    """Parse comma-separated API key string into a dictionary.

    Format: source1=key1,source2=key2
    Example: coingecko=demo:abc123,coincap=xyz789

    :param api_key_str: Comma-separated API key string.
    :returns: Dict mapping source names to API keys.
    """
    if not api_key_str:
        return {}

    api_keys = {}
    for item in api_key_str.split(","):
        item = item.strip()
        if "=" in item:
            source, key = item.split("=", 1)
            api_keys[source.strip().lower()] = key.strip()
    return api_keys


def parse_env_api_keys() -> dict[str, str]:
    """Parse API keys from individual environment variables.

    Looks for: API_KEY_COINGECKO, API_KEY_COINCAP, etc.

    :returns: Dict mapping source names to API keys.
    """
    api_keys = {}
    prefixes = ["API_KEY_", "APIKEY_"]

    for key, value in os.environ.items():
        for prefix in prefixes:
            if key.startswith(prefix) and value:
                source = key[len(prefix):].lower()
                api_keys[source] = value
                break

    return api_keys


def env_flag(name: str, default: bool = True) -> bool:
    """Read a boolean environment variable ("false", "0", "no", "off" are False)."""
    value = os.environ.get(name)
    if not value:
        return default
    return value.strip().lower() not in ("false", "0", "no", "off")


def build_store(args: argparse.Namespace) -> StateStore:
    """Create the contract-backed store if configured, else an in-memory one."""
    if args.contract_address and args.rpc_url:
        return StateStoreContract.connect(
            args.rpc_url,
            args.contract_address,
            private_key=os.environ.get("PRIVATE_KEY"),
        )
    return StateStoreMemory(
        threshold=args.threshold if args.threshold is not None else DEFAULT_THRESHOLD,
        min_update_interval=args.min_update_interval,
        history_size=args.history_size,
    )


async def run(oracle: SentinelOracle, continuous: bool, interval: int) -> None:
    """Run one cycle, or cycles forever at a fixed interval.

    Each cycle's response (or error) is printed as one line on stdout.
    """
    try:
        while True:
            request = await oracle.run_cycle()
            print(request.response if not request.is_error else request.error, flush=True)

            if not continuous:
                break
            logger.info(f"Next cycle in {interval}s")
            await asyncio.sleep(interval)
    finally:
        await oracle.aclose()


def main() -> None:
    """Main entry point for the Sentinel Oracle CLI."""
    available_sources = get_available_fetchers()

    parser = argparse.ArgumentParser(
        description="Sentinel Oracle: Multi-source market signal decisions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # One decision cycle, state kept in memory
  python -m sentinel.main --sources coingecko,coincap

  # Every 5 minutes against a deployed contract
  RPC_URL=sepolia CONTRACT_ADDRESS=0x... PRIVATE_KEY=0x... \\
      python -m sentinel.main --continuous --interval 300

  # With API keys for keyed sources
  python -m sentinel.main --sources coingecko,coincap \\
      --api-keys coingecko=demo:your-key,coincap=your-key

Environment variables (CLI args take precedence):
  SOURCES, THRESHOLD, FETCH_TIMEOUT, CYCLE_DEADLINE, MIN_UPDATE_INTERVAL,
  HISTORY_SIZE, VOLATILITY_FACTOR, UPDATE_INTERVAL, RPC_URL,
  CONTRACT_ADDRESS, PRIVATE_KEY, API_KEY_COINGECKO, API_KEY_COINCAP, etc.
""",
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or "coingecko,coincap",
    )

    parser.add_argument(
        "--threshold",
        type=int,
        help="Score at or above which a decision is triggered, 0-100 "
        "(default: the state store's threshold, 75 in memory)",
        default=int(os.environ["THRESHOLD"]) if os.environ.get("THRESHOLD") else None,
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--cycle-deadline",
        dest="cycle_deadline",
        type=float,
        help="Overall fetch budget per cycle in seconds (default: none)",
        default=float(os.environ["CYCLE_DEADLINE"]) if os.environ.get("CYCLE_DEADLINE") else None,
    )

    parser.add_argument(
        "--min-update-interval",
        dest="min_update_interval",
        type=int,
        help="Minimum seconds between persisted writes, in-memory store (default: 60)",
        default=int(os.environ.get("MIN_UPDATE_INTERVAL") or "60"),
    )

    parser.add_argument(
        "--history-size",
        dest="history_size",
        type=int,
        help="Number of replaced decisions kept, in-memory store (default: 100)",
        default=int(os.environ.get("HISTORY_SIZE") or "100"),
    )

    parser.add_argument(
        "--no-volatility",
        dest="volatility",
        action="store_false",
        help="Disable the 24h volatility score factor",
        default=env_flag("VOLATILITY_FACTOR"),
    )

    parser.add_argument(
        "--continuous",
        action="store_true",
        help="Run decision cycles forever at --interval",
    )

    parser.add_argument(
        "--interval",
        type=int,
        help="Seconds between cycles in continuous mode (default: 300)",
        default=int(os.environ.get("UPDATE_INTERVAL") or "300"),
    )

    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="Network name (sepolia, localnet) or JSON-RPC URL of the contract's chain",
        default=os.environ.get("RPC_URL"),
    )

    parser.add_argument(
        "--contract-address",
        dest="contract_address",
        type=str,
        help="Address of the AutoSentinel contract (default: in-memory store)",
        default=os.environ.get("CONTRACT_ADDRESS"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=demo:abc,coincap=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if args.threshold is not None and not 0 <= args.threshold <= 100:
        parser.error("--threshold must be between 0 and 100")

    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")

    if args.cycle_deadline is not None and args.cycle_deadline <= 0:
        parser.error("--cycle-deadline must be positive")

    if args.min_update_interval < 0:
        parser.error("--min-update-interval must be non-negative")

    if args.history_size < 1:
        parser.error("--history-size must be at least 1")

    if args.interval < 1:
        parser.error("--interval must be at least 1 second")

    if bool(args.contract_address) != bool(args.rpc_url):
        parser.error("--contract-address and --rpc-url must be given together")

    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]
    if not sources:
        parser.error("At least one source must be specified")

    # Validate sources
    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    # Log configuration
    logger.info("=" * 60)
    logger.info("Sentinel Oracle - Market Signal Decisions")
    logger.info("=" * 60)
    logger.info(f"Sources:           {', '.join(sources)}")
    logger.info(f"Threshold:         {args.threshold if args.threshold is not None else 'from state store'}")
    logger.info(f"Volatility Factor: {'enabled' if args.volatility else 'disabled'}")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    if args.cycle_deadline:
        logger.info(f"Cycle Deadline:    {args.cycle_deadline}s")
    if args.contract_address:
        logger.info(f"State Store:       contract {args.contract_address} ({args.rpc_url})")
    else:
        logger.info(f"State Store:       in-memory (min interval {args.min_update_interval}s)")
    logger.info(f"Mode:              {f'continuous every {args.interval}s' if args.continuous else 'single cycle'}")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
    logger.info("=" * 60)

    try:
        oracle = SentinelOracle.from_sources(
            sources,
            build_store(args),
            api_keys=api_keys,
            fetch_timeout=args.fetch_timeout,
            threshold=args.threshold,
            engine=DecisionEngine(volatility_enabled=args.volatility),
            ledger=RequestLedger(),
            cycle_deadline=args.cycle_deadline,
        )
        asyncio.run(run(oracle, args.continuous, args.interval))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
