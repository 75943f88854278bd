"""Command-line entry point: serve a handler from an importable module.

Example:
    microserve app:handler --port 3000
    MICROSERVE_ENV=development microserve app
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import os
import sys
from collections.abc import Sequence

from dotenv import load_dotenv
from rich.console import Console

from microserve.config.loader import load_config
from microserve.core.errors import MicroError
from microserve.dispatcher import Handler, serve
from microserve.http.transport import run_server

console = Console(stderr=True)

DEFAULT_ATTRIBUTE = "handler"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class HandlerImportError(MicroError):
    """Raised when the handler reference cannot be imported."""


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="microserve",
        description="Serve an async request handler over HTTP",
    )
    parser.add_argument(
        "target",
        help=f"Handler as 'module:attribute' (attribute defaults to '{DEFAULT_ATTRIBUTE}')",
    )
    parser.add_argument(
        "--host",
        help="Host to bind to (default: MICROSERVE_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Port to listen on (default: MICROSERVE_PORT or 3000)",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        default=None,
        help="Development mode: pretty JSON and tracebacks in error responses",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable DEBUG logging",
    )
    return parser.parse_args(argv)


def load_handler(target: str) -> Handler:
    """Import ``module:attribute`` and return the callable it names.

    Modules are resolved from the current directory first, so
    ``microserve app`` serves ./app.py.

    Raises:
        HandlerImportError: If the module or attribute is missing or not callable.
    """
    module_name, _, attribute = target.partition(":")
    attribute = attribute or DEFAULT_ATTRIBUTE

    # Console scripts do not put the working directory on sys.path
    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise HandlerImportError(f"Cannot import module '{module_name}': {e}") from e

    handler = getattr(module, attribute, None)
    if handler is None:
        raise HandlerImportError(f"Module '{module_name}' has no attribute '{attribute}'")
    if not callable(handler):
        raise HandlerImportError(f"'{target}' is not callable")
    return handler


def configure_logging(verbose: bool = False) -> None:
    """Send microserve.* logs to stderr (WARNING, or DEBUG when verbose)."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))

    micro_logger = logging.getLogger("microserve")
    micro_logger.handlers.clear()
    micro_logger.addHandler(handler)
    micro_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    micro_logger.propagate = False


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI. Returns the process exit status."""
    args = parse_args(argv)
    load_dotenv()
    configure_logging(args.verbose)

    try:
        config = load_config(host=args.host, port=args.port, development=args.dev)
        handler = load_handler(args.target)
    except MicroError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        return 1

    mode = " [yellow](development)[/yellow]" if config.development else ""
    console.print(
        f"[green]microserve[/green] serving [bold]{args.target}[/bold] "
        f"on http://{config.host}:{config.port}/{mode}"
    )

    try:
        asyncio.run(run_server(serve(handler, config), config))
    except KeyboardInterrupt:
        console.print("[dim]Shutting down[/dim]")
    except OSError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 1
    return 0
