"""Command-line interface for the Loyalty POS MCP Server."""

import argparse
import asyncio
import os
from typing import Optional, Sequence

# Backend options are handed to the servers through the environment, so the
# uvicorn reloader's worker process sees them too.
SETTING_OPTIONS = {
    "api_url": "LOYALTY_POS_API_URL",
    "timeout": "LOYALTY_POS_TIMEOUT",
    "country_code": "LOYALTY_POS_COUNTRY_CODE",
    "session_file": "LOYALTY_POS_SESSION_FILE",
    "log_level": "LOYALTY_POS_LOG_LEVEL",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Loyalty POS MCP Server - record sales and loyalty stamps against the loyalty backend"
    )
    parser.add_argument(
        "--mode",
        choices=["stdio", "http"],
        default="stdio",
        help="Server mode: stdio (for MCP clients) or http (REST API)",
    )
    parser.add_argument("--host", default="0.0.0.0", help="HTTP server host (http mode only, default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="HTTP server port (http mode only, default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes (http mode only)")

    backend = parser.add_argument_group("backend", "Override the LOYALTY_POS_* environment variables")
    backend.add_argument("--api-url", help="Loyalty backend root URL (default: http://localhost:5137/api)")
    backend.add_argument("--timeout", type=float, help="Backend request timeout in seconds (default: 15)")
    backend.add_argument("--country-code", help="Country prefix for WhatsApp receipts (default: 52)")
    backend.add_argument("--session-file", help="Operator session file (default: ~/.loyalty_pos_session.json)")
    backend.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def apply_setting_overrides(args: argparse.Namespace) -> dict[str, str]:
    """Export the backend options given on the command line. Returns what was set."""
    exported = {}
    for option, env_name in SETTING_OPTIONS.items():
        value = getattr(args, option)
        if value is not None:
            exported[env_name] = str(value)
    os.environ.update(exported)
    return exported


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    apply_setting_overrides(args)

    if args.mode == "http":
        from .http_server import run_http_server

        run_http_server(host=args.host, port=args.port, reload=args.reload)
    else:
        from .server import main as server_main

        asyncio.run(server_main())


if __name__ == "__main__":
    main()
