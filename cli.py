#!/usr/bin/env python3
"""
Command-line interface for the order sync core.

Usage:
    uv run python cli.py [command] [options]

Commands:
    demo        Run offline demo scenarios
    track       Look up one order on the configured backend
    test        Run the test suite
    serve       Start the local API server

Examples:
    uv run python cli.py demo checkout
    uv run python cli.py demo all
    uv run python cli.py track ORD-10042
    uv run python cli.py serve
"""

import argparse
import asyncio
import subprocess
import sys


def run_demo(scenario: str) -> None:
    """Run a demo scenario."""
    if scenario == "checkout":
        from order_sync.demo import run_checkout_demo
        run_checkout_demo()
    elif scenario == "duplicate-push":
        from order_sync.demo import run_duplicate_push_demo
        run_duplicate_push_demo()
    elif scenario == "all":
        from order_sync.demo import run_all_demos
        run_all_demos()
    else:
        print(f"Unknown scenario: {scenario}")
        sys.exit(1)


def run_track(token: str) -> None:
    """Look up an order by order number or tracking number and print it."""
    import logging

    from order_sync.order_store import OrderStore
    from order_sync.rest_client import OrderApiError, OrdersClient
    from shared.config import LOG_DATE_FORMAT, LOG_FORMAT, SyncConfig

    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    async def lookup():
        client = OrdersClient(OrderStore(), SyncConfig.from_env())
        try:
            return await client.track(token)
        finally:
            await client.aclose()

    try:
        order = asyncio.run(lookup())
    except OrderApiError as e:
        print(f"Lookup failed: {e}")
        sys.exit(1)
    print(order.model_dump_json(indent=2))


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = ["uv", "run", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    cmd = ["uv", "run", "uvicorn", "api.main:app", f"--host={host}", f"--port={port}"]
    if reload:
        cmd.append("--reload")

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    subprocess.run(cmd)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Order Sync CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s demo checkout
  %(prog)s demo all
  %(prog)s track ORD-10042
  %(prog)s test -v
  %(prog)s serve --reload
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run offline demo scenarios")
    demo_parser.add_argument(
        "scenario",
        choices=["checkout", "duplicate-push", "all"],
        help="Which scenario to run",
    )

    # Track command
    track_parser = subparsers.add_parser("track", help="Look up one order on the backend")
    track_parser.add_argument("token", help="Order number or tracking number")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the local API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    if args.command == "demo":
        run_demo(args.scenario)
    elif args.command == "track":
        run_track(args.token)
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
