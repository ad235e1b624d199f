"""
Infrastructure entry points shared by models, routes and workers.

- Database (db)
- Logging (configure_logging, init_logging, get_logger)
"""

from starfall.infra.db import db
from starfall.infra.log import configure_logging, init_logging, get_logger

__all__ = [
    "db",
    "configure_logging",
    "init_logging",
    "get_logger",
]
