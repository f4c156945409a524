"""
Canary Exporter CLI

Command-line entry point: parses flags, runs the first test cycle, then
serves the metrics endpoint while the scheduler keeps testing the cell.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import uvicorn
from pydantic import ValidationError

from .config import CanaryConfig
from .api.server import create_app
from .metrics.sink import PrometheusSink
from .probing.catalog import build_catalog
from .probing.orchestrator import CanaryOrchestrator
from .probing.scheduler import CycleScheduler
from .target.client import PyroscopeClient
from .utils.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog='pyroscope-canary-exporter',
        description='Canary exporter - continuously tests a Pyroscope cell and exposes the results as metrics',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Test a local Pyroscope every 15s
  pyroscope-canary-exporter --url http://localhost:4040

  # Multi-tenant cell with basic auth, running every query probe
  pyroscope-canary-exporter --url https://pyroscope.example.com \\
      --tenant-id canary --username canary --password secret --query-probe-set all

  # Faster cadence, shorter ingest-to-query delay
  pyroscope-canary-exporter --test-frequency 30s --test-delay 500ms
        """
    )

    parser.add_argument(
        '--listen-address',
        default=':4101',
        help='Listen address for the canary exporter (default: :4101)'
    )

    parser.add_argument(
        '--test-frequency',
        default='15s',
        help='How often the specified Pyroscope cell should be tested (default: 15s)'
    )

    parser.add_argument(
        '--test-delay',
        default='2s',
        help='The delay between ingest and query requests (default: 2s)'
    )

    parser.add_argument(
        '--query-probe-set',
        choices=['default', 'all'],
        default='default',
        help='Which set of probes to use for query requests (default: default)'
    )

    parser.add_argument(
        '--url',
        default='http://localhost:4040',
        help='URL of the Pyroscope cell (default: http://localhost:4040)'
    )

    parser.add_argument(
        '--tenant-id',
        default=None,
        help='Tenant ID, sent as X-Scope-OrgID'
    )

    parser.add_argument(
        '--username',
        default=None,
        help='Basic auth username'
    )

    parser.add_argument(
        '--password',
        default=None,
        help='Basic auth password'
    )

    parser.add_argument(
        '--request-timeout',
        default='10s',
        help='Timeout of a single HTTP request (default: 10s)'
    )

    parser.add_argument(
        '--log-level',
        default='INFO',
        help='Log level (default: INFO)'
    )

    parser.add_argument(
        '--log-format',
        choices=['text', 'json'],
        default='text',
        help='Log format (default: text)'
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CanaryConfig:
    return CanaryConfig(
        listen_address=args.listen_address,
        test_frequency=args.test_frequency,
        test_delay=args.test_delay,
        query_probe_set=args.query_probe_set,
        url=args.url,
        tenant_id=args.tenant_id,
        username=args.username,
        password=args.password,
        request_timeout=args.request_timeout,
        log_level=args.log_level,
        log_format=args.log_format,
    )


async def serve(config: CanaryConfig) -> None:
    """Run the first cycle, then serve metrics while the scheduler runs."""
    sink = PrometheusSink()
    api = PyroscopeClient(
        config.url,
        tenant_id=config.tenant_id,
        username=config.username,
        password=config.password,
        timeout=config.request_timeout,
    )
    orchestrator = CanaryOrchestrator(
        api,
        build_catalog(api, config.query_probe_set),
        sink,
        test_delay=config.test_delay,
    )
    scheduler = CycleScheduler(orchestrator, interval=config.test_frequency)

    logger.info(
        f"Starting canary exporter: url={config.url} listen={config.listen_address} "
        f"frequency={config.test_frequency}s delay={config.test_delay}s probes={config.query_probe_set.value}"
    )

    await scheduler.run_once()

    app = create_app(sink, scheduler, run_immediately=False)
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=config.listen_host,
        port=config.listen_port,
        log_config=None,
        access_log=False,
    ))
    await server.serve()


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    configure_logging(config.log_level, config.log_format)

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except SystemExit as e:
        # uvicorn exits when the listener cannot be bound
        logger.error(f"Metrics server exited: code={e.code}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
