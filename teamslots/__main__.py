"""
Convenience entry point for running teamslots directly.

Usage: python -m teamslots [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()
