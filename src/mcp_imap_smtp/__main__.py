"""Command-line entry point: ``python -m src.mcp_imap_smtp``."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Iterable

import anyio
import uvicorn

from contracts import EmailMCPError
from src.mcp_imap_smtp.config import load_config
from src.mcp_imap_smtp.server import create_server, logger

TRANSPORT_CHOICES = ("stdio", "sse")


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the IMAP/SMTP email MCP server.")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the JSON config file (default: ./config.json).",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORT_CHOICES,
        default="stdio",
        help="stdio for a single client, sse for multi-client HTTP.",
    )
    parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Do not test IMAP and SMTP logins before serving.",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except EmailMCPError as e:
        logger.error(f"Failed to load config: {e}")
        return 1

    server = create_server(config)

    if not args.skip_validation:
        logger.info("Validating email server connections...")
        try:
            server.validate_connections()
        except EmailMCPError as e:
            logger.error(f"Connection validation failed: {e}")
            return 1
        logger.info("Email server connections validated successfully")

    if args.transport == "sse":
        host, port = config.http.host, config.http.port
        logger.info(f"Starting Email MCP Server (SSE) on {host}:{port}")
        logger.info(f"MCP endpoint: http://{host}:{port}/sse")
        uvicorn.run(server.create_http_app(), host=host, port=port)
    else:
        try:
            anyio.run(server.run_stdio)
        except KeyboardInterrupt:
            logger.info("Shutting down...")

    logger.info("Server stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
