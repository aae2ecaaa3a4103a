"""MADO Bridge CLI Package.

Public API:
- main: CLI entry point
"""

from mado_bridge.cli.main import main

__all__ = ["main"]
