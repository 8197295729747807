#!/usr/bin/env python3
"""
watch-tower: database-role aware replica controller

Keeps spec.replicas of the managed custom resources at their annotated
target while the backing PostgreSQL database is a reachable primary, and at
zero otherwise.
"""

import argparse
import os
import signal
import sys
import threading

from dotenv import load_dotenv

from .cluster import ClusterClient, load_kube_config
from .constants import (
    DEFAULT_ANNOTATION_KEY,
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_RESOURCE_GROUP,
    DEFAULT_RESOURCE_PLURAL,
    DEFAULT_RESOURCE_VERSION,
    DEFAULT_RETRY_INTERVAL_SECONDS,
    ENV_DATABASE_URL,
    ENV_NAMESPACE,
)
from .db import Database, _sanitize_database_url
from .engine import Engine
from .exceptions import ConfigError
from .log import get_logger, setup_logging
from .models import DatabaseCredentials, ReconcilerConfig, ResourceKind

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="watch-tower",
        description="Scale custom resources with the role of their database",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Common arguments
    common_parser = argparse.ArgumentParser(add_help=False)
    common_parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Enable verbose logging (-v for debug, -vv for trace)",
    )
    common_parser.add_argument(
        "--postgres-url",
        type=str,
        help=f"PostgreSQL connection URL (defaults to {ENV_DATABASE_URL} env var)",
    )
    common_parser.add_argument(
        "--namespace",
        type=str,
        help=f"Namespace of the managed resources (defaults to {ENV_NAMESPACE})",
    )
    common_parser.add_argument(
        "--kubeconfig",
        type=str,
        help="Kubeconfig path, used when not running in-cluster",
    )
    common_parser.add_argument("--group", default=DEFAULT_RESOURCE_GROUP)
    common_parser.add_argument("--version", default=DEFAULT_RESOURCE_VERSION)
    common_parser.add_argument("--plural", default=DEFAULT_RESOURCE_PLURAL)
    common_parser.add_argument(
        "--annotation-key",
        default=DEFAULT_ANNOTATION_KEY,
        help="Annotation holding the replica count to use while primary",
    )
    common_parser.add_argument(
        "--interval",
        type=float,
        default=DEFAULT_INTERVAL_SECONDS,
        help="Seconds between successful cycles",
    )
    common_parser.add_argument(
        "--retry-interval",
        type=float,
        default=DEFAULT_RETRY_INTERVAL_SECONDS,
        help="Seconds between cycles while the database is unavailable",
    )

    _ = subparsers.add_parser(
        "run", parents=[common_parser], help="Run the watch loop until stopped"
    )
    _ = subparsers.add_parser(
        "once", parents=[common_parser], help="Run a single cycle and patch resources"
    )
    _ = subparsers.add_parser(
        "dry-run",
        parents=[common_parser],
        help="Run a single cycle and print the patches it would make",
    )

    return parser


def build_config(
    args: argparse.Namespace,
) -> tuple[ReconcilerConfig, DatabaseCredentials]:
    """
    Build the reconciler configuration from parsed arguments and environment

    Raises:
        ConfigError: If required settings are missing or invalid
    """
    database_url = args.postgres_url or os.getenv(ENV_DATABASE_URL)
    if not database_url:
        raise ConfigError(
            f"{ENV_DATABASE_URL} environment variable or --postgres-url required"
        )

    namespace = args.namespace or os.getenv(ENV_NAMESPACE)
    if not namespace:
        raise ConfigError(
            f"{ENV_NAMESPACE} environment variable or --namespace required"
        )

    credentials = DatabaseCredentials.from_url(database_url)
    config = ReconcilerConfig(
        namespace=namespace,
        kind=ResourceKind(group=args.group, version=args.version, plural=args.plural),
        annotation_key=args.annotation_key,
        interval_seconds=args.interval,
        retry_interval_seconds=args.retry_interval,
    )
    logger.debug(
        "Configuration loaded",
        extra={
            "database": _sanitize_database_url(database_url),
            "namespace": config.namespace,
            "kind": str(config.kind),
        },
    )
    return config, credentials


def main():
    # Load environment variables from .env file
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(verbose=args.verbose)

    try:
        config, credentials = build_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    stop_event = threading.Event()

    def request_shutdown(signum, frame):
        logger.info("Shutdown requested", extra={"signal": signal.Signals(signum).name})
        stop_event.set()

    signal.signal(signal.SIGTERM, request_shutdown)
    signal.signal(signal.SIGINT, request_shutdown)

    try:
        load_kube_config(args.kubeconfig)
        database = Database(
            credentials,
            probe_timeout=config.probe_timeout_seconds,
            connect_timeout=config.connect_timeout_seconds,
            query_timeout=config.query_timeout_seconds,
        )
        cluster = ClusterClient(
            config.kind, config.namespace, request_timeout=config.api_timeout_seconds
        )
        engine = Engine(config, database, cluster, stop_event=stop_event)

        if args.command == "run":
            engine.run()
        elif args.command == "once":
            result = engine.apply()
            if not result.succeeded:
                sys.exit(1)
        elif args.command == "dry-run":
            engine.dry_run()
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
