"""
Command-line interface for the Docflow server.
"""

import argparse
import sys

from .. import __version__


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="docflow-server",
        description="Docflow Server - Document lifecycle and carrier submission workflow",
    )

    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to (default: 8000)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (default: sqlite:///./docflow.db)",
    )
    parser.add_argument(
        "--api-keys",
        default=None,
        help="Comma-separated list of API keys (default: dev-user-key,signature-provider-key,carrier-gateway-key)",  # noqa: E501
    )
    parser.add_argument(
        "--carrier-catalog",
        default=None,
        help="Path to a YAML carrier catalog (default: bundled catalog)",
    )
    parser.add_argument(
        "--expiry-days",
        type=int,
        default=7,
        help="Default signature request expiry in days (default: 7)",
    )
    parser.add_argument(
        "--sweep-interval",
        type=float,
        default=300.0,
        help="Seconds between expiry sweeps, 0 to disable (default: 300)",
    )
    parser.add_argument(
        "--contact-gateway-url",
        default=None,
        help="Email/SMS/link gateway URL (default: log deliveries only)",
    )
    parser.add_argument(
        "--carrier-gateway-url",
        default=None,
        help="Carrier submission gateway URL (default: log submissions only)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    args = parser.parse_args()

    api_keys = None
    if args.api_keys:
        api_keys = set(args.api_keys.split(","))

    from .app import DocflowServer

    print(f"""
╔══════════════════════════════════════════════════════════════╗
║                    Docflow Server v{__version__:<26}║
╠══════════════════════════════════════════════════════════════╣
║  Host: {args.host:<54}║
║  Port: {args.port:<54}║
║  Database: {(args.database_url or "sqlite:///./docflow.db")[:50]:<50}║
║  Expiry sweep: every {args.sweep_interval:<40}║
╚══════════════════════════════════════════════════════════════╝

📖 API Documentation: http://{args.host}:{args.port}/docs
🔍 Discovery: http://{args.host}:{args.port}/.well-known/docflow.json

Press Ctrl+C to stop the server.
""")

    try:
        server = DocflowServer(
            host=args.host,
            port=args.port,
            database_url=args.database_url,
            api_keys=api_keys,
            carrier_catalog=args.carrier_catalog,
            default_expiry_days=args.expiry_days,
            sweep_interval=args.sweep_interval,
            contact_gateway_url=args.contact_gateway_url,
            carrier_gateway_url=args.carrier_gateway_url,
            debug=args.debug,
            log_level=args.log_level,
        )
        server.run()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
