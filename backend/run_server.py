#!/usr/bin/env python3
"""Command-line entry point for the upload server.

Every flag falls back to an environment variable (``.env`` is honored) and
then to a built-in default.

Usage:
    python run_server.py --dir ./uploads
    python run_server.py --listen-addr 127.0.0.1:8080 --form-field file
    python run_server.py --max-size 32 --read-timeout 1m
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add backend directory to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

from rich.console import Console  # noqa: E402
from rich.table import Table  # noqa: E402

from api.health import HealthGate  # noqa: E402
from api.lifecycle import ServerLifecycle  # noqa: E402
from api.main import create_app  # noqa: E402
from config import Config, ConfigError, parse_duration, validate_directory  # noqa: E402
from middleware.context import REQUEST_ID_FORMATS, RequestIDFactory  # noqa: E402
from utils.errors import StartupError  # noqa: E402
from utils.logging import configure_logging, get_logger  # noqa: E402

console = Console(stderr=True)
logger = get_logger("run_server")


def duration_arg(value: str) -> float:
    """argparse type for durations such as ``15s`` or ``1m30s``."""
    try:
        return parse_duration(value)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(e.message) from e


def build_parser(defaults: Config) -> argparse.ArgumentParser:
    """Build the argument parser, seeded with *defaults*."""
    parser = argparse.ArgumentParser(
        description="Upload Server - accept multipart file uploads and save them to a directory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --dir ./uploads
  %(prog)s --listen-addr 127.0.0.1:8080 --upload-endpoint /files
  %(prog)s --max-size 32 --read-timeout 1m --write-timeout 1m
        """,
    )

    parser.add_argument(
        "--dir",
        default=defaults.dir,
        help="Directory where files are saved (default: %(default)s)",
    )

    parser.add_argument(
        "--listen-addr",
        default=defaults.listen_addr,
        help="Address to listen on, in the form 'host:port' (default: %(default)s)",
    )

    parser.add_argument(
        "--form-field",
        default=defaults.form_upload_field,
        help="Name of the form field used for file uploads (default: %(default)s)",
    )

    parser.add_argument(
        "--upload-endpoint",
        default=defaults.upload_endpoint,
        help="Path of the upload endpoint (default: %(default)s)",
    )

    parser.add_argument(
        "--max-size",
        type=int,
        default=defaults.max_in_memory_size >> 20,
        help="Megabytes of each uploaded part kept in memory; the rest goes to temporary files (default: %(default)s)",
    )

    parser.add_argument(
        "--read-timeout",
        type=duration_arg,
        default=defaults.read_timeout,
        help="Timeout for reading the request body, e.g. '15s' (default: %(default)ss)",
    )

    parser.add_argument(
        "--write-timeout",
        type=duration_arg,
        default=defaults.write_timeout,
        help="Timeout for saving the upload, e.g. '15s' (default: %(default)ss)",
    )

    parser.add_argument(
        "--idle-timeout",
        type=duration_arg,
        default=defaults.idle_timeout,
        help="Timeout for keeping idle connections, e.g. '60s' (default: %(default)ss)",
    )

    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Log level (default: %(default)s)",
    )

    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=os.getenv("ENVIRONMENT", "development") == "production",
        help="Emit JSON log lines",
    )

    parser.add_argument(
        "--request-id-format",
        choices=sorted(REQUEST_ID_FORMATS),
        default=os.getenv("REQUEST_ID_FORMAT", "uuid"),
        help="How request IDs are generated when the caller sends none (default: %(default)s)",
    )

    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """Turn parsed arguments into a ``Config``."""
    return Config(
        dir=args.dir,
        listen_addr=args.listen_addr,
        form_upload_field=args.form_field,
        upload_endpoint=args.upload_endpoint,
        max_in_memory_size=args.max_size << 20,
        read_timeout=args.read_timeout,
        write_timeout=args.write_timeout,
        idle_timeout=args.idle_timeout,
    )


def print_config(config: Config) -> None:
    """Print the effective configuration."""
    table = Table(show_header=True, header_style="bold", title="Upload Server")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Directory", config.dir)
    table.add_row("Listen address", config.listen_addr)
    table.add_row("Upload endpoint", config.upload_endpoint)
    table.add_row("Form field", config.form_upload_field)
    table.add_row("In-memory part size", f"{config.max_in_memory_size >> 20} MB")
    table.add_row("Read / write / idle timeout", f"{config.read_timeout:g}s / {config.write_timeout:g}s / {config.idle_timeout:g}s")

    console.print(table)


async def serve(config: Config, request_id_factory: RequestIDFactory | None = None) -> None:
    """Run the server until it is told to stop."""
    gate = HealthGate()
    app = create_app(config, health_gate=gate, request_id_factory=request_id_factory)
    await ServerLifecycle(app, config, gate).run()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    try:
        defaults = Config.from_env()
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        sys.exit(1)

    parser = build_parser(defaults)
    args = parser.parse_args(argv)

    configure_logging(json_logs=args.json_logs, log_level=args.log_level)

    config = config_from_args(args)
    try:
        validate_directory(config.dir)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        logger.error("startup_failed", error=e.message, **e.details)
        sys.exit(1)

    logger.info("Initialization completed successfully", config=str(config))
    print_config(config)

    try:
        asyncio.run(serve(config, REQUEST_ID_FORMATS[args.request_id_format]))
    except StartupError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        logger.error("startup_failed", error=e.message, **e.details)
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Forced shutdown.[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
