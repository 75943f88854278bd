"""Command-line interface."""

from microserve.cli.main import load_handler, main, parse_args

__all__ = ["load_handler", "main", "parse_args"]
