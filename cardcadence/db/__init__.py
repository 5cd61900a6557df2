"""Database package for cardcadence.

Only ItemDatabase is exported as the public API.
"""

from .database import ItemDatabase

__all__ = ["ItemDatabase"]
