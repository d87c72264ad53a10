"""
HTTP transport for filerelay.

Usage::

    uvicorn filerelay.api:create_app --factory
"""

from filerelay.api.app import create_app

__all__ = ["create_app"]
