"""
teamslots - publish team availability and book conflict-free meeting slots.
"""

__version__ = "0.1.0"
