"""
API module for versadb.

Exposes the Database operations over HTTP (aiohttp). The handlers are
thin: they parse JSON, call the facade and map VersaDbError codes to
HTTP statuses.

How to change safely:
    - New operations go on the Database facade first, then get a route
"""

from .http_server import create_http_app, run_http_server

__all__ = [
    "create_http_app",
    "run_http_server",
]
