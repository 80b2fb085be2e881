"""ferry command line interface."""

from __future__ import annotations

from ferry_core.cli.main import cli, main

__all__: list[str] = ["cli", "main"]
