#!/usr/bin/env python3
"""
ntpbeacon daemon

Starts the background NTP poller and the HTTP server that exposes the latest
sample. Also offers a one-shot query command for checking a server by hand.

Usage:
    ntpbeacon serve --config config/ntpbeacon.yaml
    ntpbeacon query --server pool.ntp.org
"""

import argparse
import logging
import signal
import sys
from typing import Optional

from .clock import SystemTimestampSource
from .config import BeaconConfig, load_config
from .errors import NTPError
from .exchange import exchange
from .poller import NTPPoller
from .query import TimeQuery
from .state import SharedTimeState
from .transport import Endpoint, UDPTransport
from .web import create_app, serve

logger = logging.getLogger(__name__)


def setup_logging(config: BeaconConfig):
    logging.basicConfig(
        level=config.logging.level.upper(),
        format=config.logging.format
    )


def apply_overrides(config: BeaconConfig, args: argparse.Namespace) -> BeaconConfig:
    """Command line flags take precedence over the config file."""
    if getattr(args, 'server', None):
        config.ntp.server = args.server
    if getattr(args, 'http_host', None):
        config.http.host = args.http_host
    if getattr(args, 'http_port', None) is not None:
        config.http.port = args.http_port
    if getattr(args, 'log_level', None):
        config.logging.level = args.log_level
    return config.validate()


def run_server(config: BeaconConfig) -> int:
    state = SharedTimeState()
    poller = NTPPoller(config.ntp, state)
    app = create_app(TimeQuery(state))

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        poller.stop()
        sys.exit(0)

    signal.signal(signal.SIGTERM, _signal_handler)

    poller.start()
    try:
        serve(app, host=config.http.host, port=config.http.port)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    finally:
        poller.stop()
    return 0


def run_query(config: BeaconConfig) -> int:
    settings = config.ntp
    try:
        endpoint = Endpoint.resolve(settings.server, settings.port, settings.timeout_seconds)
        with UDPTransport(settings.bind_address, settings.bind_port) as transport:
            sample = exchange(
                endpoint,
                SystemTimestampSource(),
                transport,
                version=settings.version,
                roundtrip_tolerance_micros=settings.roundtrip_tolerance_micros
            )
    except NTPError as e:
        print(f"✗ NTP query to {settings.server} failed: {e}")
        return 1

    print(f"✓ NTP query to {endpoint} ({endpoint.address[0]}) successful:")
    print(f"  Time: {sample.seconds}.{sample.seconds_fraction:06d}")
    print(f"  Offset: {sample.offset_micros} μs")
    print(f"  Roundtrip: {sample.roundtrip_micros} μs")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the latest NTP time over HTTP")
    parser.add_argument('command', choices=['serve', 'query'],
                        help='serve: poll and serve over HTTP; query: one exchange and exit')
    parser.add_argument('--config', type=str, default=None,
                        help='YAML configuration file (defaults apply when omitted)')
    parser.add_argument('--server', type=str,
                        help='NTP server hostname or address')
    parser.add_argument('--http-host', type=str,
                        help='HTTP listen address')
    parser.add_argument('--http-port', type=int,
                        help='HTTP listen port')
    parser.add_argument('--log-level', type=str,
                        help='Logging level (DEBUG, INFO, WARNING, ...)')
    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = apply_overrides(load_config(args.config), args)
    except (FileNotFoundError, ValueError) as e:
        print(f"✗ Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config)

    if args.command == 'query':
        return run_query(config)
    return run_server(config)


if __name__ == '__main__':
    sys.exit(main())
