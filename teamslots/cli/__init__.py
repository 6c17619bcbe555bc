"""
Command line front-end.
"""

from .app import app

__all__ = ["app"]
