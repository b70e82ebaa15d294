"""
Prometheus metrics server for Polity.

Exposes the governance metrics (proposals created and resolved, votes cast,
resolution races, law executions, sweep timings and active alliances) at
/metrics. Prometheus counters live in the process that moves them, so with
--db the server also acts as the sweep scheduler: it resolves expired
proposals on an interval and exports what each sweep did.

Usage:
    python -m polity.metrics_server --port 9090
    python -m polity.metrics_server --db governance.db --sweep-interval 60
"""

import argparse
import time
from pathlib import Path

from polity.kernel.logging import configure_logging, get_logger
from polity.kernel.metrics import start_metrics_server
from polity.polity import Polity

logger = get_logger(__name__)


def run_sweep(polity: Polity) -> dict:
    """One scheduled sweep; the counters it moves are what /metrics reports"""
    result = polity.sweep_expired()
    if result["failures"]:
        logger.warning(
            "Scheduled sweep had failures",
            sweep_id=result["sweep_id"],
            failures=len(result["failures"]),
        )
    return result


def main(argv: list[str] | None = None) -> None:
    """
    Start the Prometheus metrics server, sweeping expired proposals if a
    database is given.
    """
    parser = argparse.ArgumentParser(
        description="Expose Polity governance metrics to Prometheus and optionally "
        "sweep expired proposals on a schedule"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=9090,
        help="Port to listen on (default: 9090)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Governance database; when set, expired proposals are swept on an interval",
    )
    parser.add_argument(
        "--sweep-interval",
        type=float,
        default=60.0,
        help="Seconds between sweeps when --db is set (default: 60)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs in JSON format (default: False)",
    )

    args = parser.parse_args(argv)
    if args.sweep_interval <= 0:
        parser.error("--sweep-interval must be positive")

    configure_logging(json_output=args.json_logs, log_level=args.log_level)

    polity = Polity(args.db) if args.db is not None else None

    logger.info(
        "Starting governance metrics server",
        port=args.port,
        endpoint=f"http://0.0.0.0:{args.port}/metrics",
        db=str(args.db) if args.db else None,
        sweep_interval=args.sweep_interval if polity else None,
    )
    start_metrics_server(port=args.port)

    next_sweep = time.monotonic()
    try:
        while True:
            if polity is not None and time.monotonic() >= next_sweep:
                run_sweep(polity)
                next_sweep = time.monotonic() + args.sweep_interval
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down metrics server")


if __name__ == "__main__":
    main()
