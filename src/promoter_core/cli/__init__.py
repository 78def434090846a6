"""Command-line interface for the promotion coordinator."""

from __future__ import annotations

from promoter_core.cli.main import cli, main

__all__ = ["cli", "main"]
