"""Bidirectional sync between a local Markdown directory and a remote vault."""

__version__ = "0.1.0"
