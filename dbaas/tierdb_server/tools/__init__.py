"""
CLI tools for TierDB administration.

This module provides command-line tools for:
- archive: Run, drain and inspect the archival engine

Invariants:
    - Tools work without a running server
    - Operations are idempotent where possible
"""

from .archive_cli import ArchiveCLI

__all__ = ["ArchiveCLI"]
