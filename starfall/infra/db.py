"""
Unified database infrastructure module.

All models and services should import the SQLAlchemy instance from here.
"""

from starfall.database import db

__all__ = ["db"]
