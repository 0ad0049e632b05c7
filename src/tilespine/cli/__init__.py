"""Command-line interface (``tilespine``)."""

from tilespine.cli.app import app

__all__ = ["app"]
