"""
API module for TierDB server.

This module provides the external interface:
- HTTP server (REST API over RecordAccess)

Invariants:
    - Writes go to the primary store
    - Reads fall back to the archive transparently
    - Callers never see tier-specific errors

How to change safely:
    - Add new endpoints, don't change the semantics of existing ones
"""

from .http_server import HttpServer, create_http_app

__all__ = [
    "HttpServer",
    "create_http_app",
]
