"""
CLI layer for filerelay.

Entry point::

    filerelay --help
"""

from filerelay.cli.app import app

__all__ = ["app"]
