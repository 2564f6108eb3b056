#!/usr/bin/env python3
"""Quorum Price Oracle.

Fetches cryptocurrency prices from multiple off-chain sources, rejects
outliers, aggregates them per pair and commits significant moves to the
on-chain oracle contract.

Configure via CLI flags or environment variables; CLI flags take precedence.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from .src.fetchers import get_available_fetchers
from .src.ledger import DEFAULT_ORACLE_ADDRESS
from .src.OracleController import State
from .src.PriceAggregator import AGGREGATION_METHODS
from .src.PriceOracle import PriceOracle
from .src.TradingPair import parse_pair_limits

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
    Example: coingecko=abc123,coinmarketcap=xyz789

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

    Looks for: API_KEY_COINGECKO, API_KEY_COINMARKETCAP, etc.

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


def parse_source_weights(weights_str: str | None) -> dict[str, float]:
    """Parse per-source weights for the weighted aggregation method.

    Format: source1=weight1,source2=weight2 (e.g., binance=2,coingecko=1.5)

    :param weights_str: Comma-separated weight string.
    :returns: Dict mapping source names to weights.
    :raises ValueError: If an entry is malformed or a weight is negative.
    """
    if not weights_str:
        return {}

    weights = {}
    for item in weights_str.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"Invalid source weight '{item}', expected source=weight")
        source, value = item.split("=", 1)
        weight = float(value)
        if weight < 0:
            raise ValueError(f"Weight for {source.strip()} must not be negative")
        weights[source.strip().lower()] = weight
    return weights


def parse_list(value: str | None) -> list[str]:
    """Split a comma-separated option into trimmed, lowercase entries."""
    if not value:
        return []
    return [item.strip().lower() for item in value.split(",") if item.strip()]


def build_parser(available_sources: list[str]) -> argparse.ArgumentParser:
    """Build the CLI parser with environment variable defaults.

    :param available_sources: Registered fetcher names, for the help text.
    :returns: Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        description="Quorum Price Oracle: Validated multi-source price feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # BTC/USD from three free sources
  python -m price_oracle.main --pairs btc/usd --sources coinbase,kraken,coingecko

  # Multiple pairs with custom bounds and a weighted combination
  python -m price_oracle.main --pairs btc/usd,eth/usd,ton/usd \\
      --sources coingecko,binance,coinmarketcap \\
      --pair-limits ton/usd=0.5:100:4 \\
      --aggregation-method weighted --source-weights binance=2

  # With API keys for premium sources
  python -m price_oracle.main --pairs btc/usd \\
      --sources coinbase,coingecko,coinmarketcap \\
      --api-keys coinmarketcap=your-api-key

Environment variables (CLI args take precedence):
  PAIRS, PAIR_LIMITS, SOURCES, SOURCE_WEIGHTS, UPDATE_INTERVAL,
  DEVIATION_THRESHOLD, OUTLIER_THRESHOLD, MIN_SOURCES, MAX_PRICE_AGE,
  AGGREGATION_METHOD, RETRY_ATTEMPTS, FETCH_TIMEOUT, NETWORK, RPC_URL,
  ORACLE_ADDRESS, ACCOUNT_ADDRESS, APPD_URL, STATUS_INTERVAL,
  API_KEYS, API_KEY_COINGECKO, API_KEY_COINMARKETCAP, etc.
""",
    )

    parser.add_argument(
        "--pairs",
        type=str,
        help="Comma-separated trading pairs (e.g., btc/usd,eth/usd,ton/usd)",
        default=os.environ.get("PAIRS") or "btc/usd,eth/usd",
    )

    parser.add_argument(
        "--pair-limits",
        dest="pair_limits",
        type=str,
        help="Per-pair bounds as pair=min:max[:decimals] (e.g., ton/usd=0.1:1000:4)",
        default=os.environ.get("PAIR_LIMITS"),
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or "coinbase,kraken,bitstamp,coingecko",
    )

    parser.add_argument(
        "--source-weights",
        dest="source_weights",
        type=str,
        help="Per-source weights for --aggregation-method weighted (e.g., binance=2)",
        default=os.environ.get("SOURCE_WEIGHTS"),
    )

    parser.add_argument(
        "--update-interval",
        dest="update_interval",
        type=float,
        help="Seconds between update cycles (minimum: 1, default: 300)",
        default=float(os.environ.get("UPDATE_INTERVAL") or "300"),
    )

    parser.add_argument(
        "--deviation-threshold",
        dest="deviation_threshold",
        type=float,
        help="Percent move since the last commit that triggers a new one (default: 1.0)",
        default=float(os.environ.get("DEVIATION_THRESHOLD") or "1.0"),
    )

    parser.add_argument(
        "--outlier-threshold",
        dest="outlier_threshold",
        type=float,
        help="Standard deviations from the mean before a price is an outlier (default: 2.0)",
        default=float(os.environ.get("OUTLIER_THRESHOLD") or "2.0"),
    )

    parser.add_argument(
        "--min-sources",
        dest="min_sources",
        type=int,
        help="Minimum sources required for valid aggregation (default: 2)",
        default=int(os.environ.get("MIN_SOURCES") or "2"),
    )

    parser.add_argument(
        "--max-price-age",
        dest="max_price_age",
        type=float,
        help="Seconds after which an observation is reported as stale (default: 300)",
        default=float(os.environ.get("MAX_PRICE_AGE") or "300"),
    )

    parser.add_argument(
        "--aggregation-method",
        dest="aggregation_method",
        type=str,
        help=f"Price combination method: {', '.join(AGGREGATION_METHODS)} (default: median)",
        default=os.environ.get("AGGREGATION_METHOD") or "median",
    )

    parser.add_argument(
        "--retry-attempts",
        dest="retry_attempts",
        type=int,
        help="Fetch attempts per cycle and consecutive failures before stopping (default: 3)",
        default=int(os.environ.get("RETRY_ATTEMPTS") or "3"),
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual fetch requests in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--network",
        type=str,
        help="Network to connect to (sapphire, sapphire-testnet, sapphire-localnet)",
        default=os.environ.get("NETWORK") or "sapphire-localnet",
    )

    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="RPC URL overriding the network default",
        default=os.environ.get("RPC_URL"),
    )

    parser.add_argument(
        "--oracle-address",
        dest="oracle_address",
        type=str,
        help="Address of the price oracle contract",
        default=os.environ.get("ORACLE_ADDRESS"),
    )

    parser.add_argument(
        "--account-address",
        dest="account_address",
        type=str,
        help="Submitting account address, for balance reporting",
        default=os.environ.get("ACCOUNT_ADDRESS"),
    )

    parser.add_argument(
        "--appd-url",
        dest="appd_url",
        type=str,
        help="ROFL appd URL or socket path (default: /run/rofl-appd.sock)",
        default=os.environ.get("APPD_URL") or "",
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=abc,coinmarketcap=xyz)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "--status-interval",
        dest="status_interval",
        type=float,
        help="Seconds between status log lines, 0 to disable (default: 300)",
        default=float(os.environ.get("STATUS_INTERVAL") or "300"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    return parser


async def log_status(oracle: PriceOracle, interval: float) -> None:
    """Log a one-line status summary every interval seconds.

    :param oracle: Running oracle.
    :param interval: Seconds between log lines.
    """
    while True:
        await asyncio.sleep(interval)
        status = oracle.get_status()
        health = oracle.get_health()
        controller = status["controller"]
        prices = ", ".join(
            f"{key}=${entry['price']:.6f}" for key, entry in status["prices"].items()
        )
        online = sum(1 for s in status["sources"].values() if s["online"])
        logger.info(
            f"Status: {health.status.value} | cycles={controller['total_cycles']} "
            f"failures={controller['total_failures']} | "
            f"sources online {online}/{len(status['sources'])} | {prices or 'no prices yet'}"
        )


async def run_oracle(oracle: PriceOracle, status_interval: float) -> int:
    """Check the ledger, then run the oracle until it stops.

    :param oracle: Configured oracle.
    :param status_interval: Seconds between status log lines (0 disables).
    :returns: Process exit code.
    """
    health = await oracle.ledger.health_check()
    if health.get("status") != "healthy":
        logger.error(f"Ledger is not healthy: {health.get('details')}")
        return 1
    logger.info(f"Ledger healthy: {health.get('details')}")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, oracle.stop)

    status_task = None
    if status_interval > 0:
        status_task = asyncio.create_task(log_status(oracle, status_interval))

    try:
        await oracle.run()
    finally:
        if status_task is not None:
            status_task.cancel()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    if oracle.controller.state == State.FAILED:
        logger.error("Oracle stopped after repeated update failures")
        return 1
    logger.info("Oracle stopped")
    return 0


def main() -> None:
    """Main entry point for the Quorum Price Oracle CLI."""
    available_sources = get_available_fetchers()
    parser = build_parser(available_sources)
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if args.update_interval < 1:
        parser.error("--update-interval must be at least 1 second")

    if args.min_sources < 1:
        parser.error("--min-sources must be at least 1")

    if args.retry_attempts < 1:
        parser.error("--retry-attempts must be at least 1")

    if args.deviation_threshold < 0:
        parser.error("--deviation-threshold must not be negative")

    if args.outlier_threshold <= 0:
        parser.error("--outlier-threshold must be positive")

    if args.aggregation_method not in AGGREGATION_METHODS:
        parser.error(
            f"--aggregation-method must be one of {', '.join(AGGREGATION_METHODS)}"
        )

    pairs = parse_list(args.pairs)
    sources = parse_list(args.sources)

    if not pairs:
        parser.error("At least one trading pair must be specified")

    if not sources:
        parser.error("At least one source must be specified")

    # Validate sources
    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    if len(sources) < args.min_sources:
        parser.error(
            f"{len(sources)} sources enabled but --min-sources is {args.min_sources}"
        )

    try:
        pair_limits = parse_pair_limits(args.pair_limits)
        source_weights = parse_source_weights(args.source_weights)
    except ValueError as e:
        parser.error(str(e))

    # Parse API keys (CLI + environment)
    api_keys = parse_env_api_keys()
    api_keys.update(parse_api_keys(args.api_keys))

    oracle_address = args.oracle_address or DEFAULT_ORACLE_ADDRESS.get(args.network)
    if not oracle_address:
        parser.error(f"No oracle address configured for network {args.network}")

    # Log configuration
    logger.info("=" * 60)
    logger.info("Quorum Price Oracle")
    logger.info("=" * 60)
    logger.info(f"Network:           {args.network}")
    logger.info(f"Oracle Contract:   {oracle_address}")
    logger.info(f"Trading Pairs:     {', '.join(pairs)}")
    logger.info(f"Sources:           {', '.join(sources)}")
    logger.info(f"Min Sources:       {args.min_sources}")
    logger.info(f"Aggregation:       {args.aggregation_method}")
    logger.info(f"Outlier Threshold: {args.outlier_threshold} stddev")
    logger.info(f"Deviation Gate:    {args.deviation_threshold}%")
    logger.info(f"Max Price Age:     {args.max_price_age}s")
    logger.info(f"Update Interval:   {args.update_interval}s")
    logger.info(f"Retry Attempts:    {args.retry_attempts}")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    if source_weights:
        logger.info(f"Source Weights:    {source_weights}")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
    logger.info("=" * 60)

    try:
        price_oracle = PriceOracle(
            network_name=args.network,
            pairs=pairs,
            sources=sources,
            oracle_address=oracle_address,
            api_keys=api_keys,
            pair_limits=pair_limits,
            source_weights=source_weights,
            update_interval=args.update_interval,
            deviation_threshold=args.deviation_threshold,
            outlier_threshold=args.outlier_threshold,
            min_sources=args.min_sources,
            max_price_age=args.max_price_age,
            aggregation_method=args.aggregation_method,
            retry_attempts=args.retry_attempts,
            fetch_timeout=args.fetch_timeout,
            appd_url=args.appd_url,
            account_address=args.account_address,
            rpc_url=args.rpc_url,
        )
        sys.exit(asyncio.run(run_oracle(price_oracle, args.status_interval)))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
