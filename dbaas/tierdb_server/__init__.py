"""
TierDB Server - tiered record store with transparent cold-path fallback.

This package keeps recently-written records in a low-latency primary store
and migrates records that age past a retention window into a cheap archive
store, while callers keep a single get/put/delete contract:
- SQLite as the primary (hot) store
- S3 as the archive (cold) store
- A periodic archival engine that moves aged records between the two

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Client    │────▶│ HTTP server │────▶│  RecordAccess   │
    └─────────────┘     └─────────────┘     └───┬─────────┬───┘
                                                │         │
                                       hot path │         │ cold fallback
                                                ▼         ▼
                                         ┌─────────┐ ┌─────────┐
                                         │ SQLite  │ │   S3    │
                                         │(primary)│ │(archive)│
                                         └────▲────┘ └────▲────┘
                                              │           │
                                              └─────┬─────┘
                                                    │
                                           ┌────────┴────────┐
                                           │ ArchivalEngine  │
                                           │ (periodic pass) │
                                           └─────────────────┘

Invariants:
    - Writes always land in the primary store
    - A record is deleted from primary only after a verified archive copy exists
    - At every instant a record is readable from primary, archive, or both
    - Archival never changes a record's timestamp or payload

How to change safely:
    - Archive object format changes require a new format_version
    - Never relax the verify-before-delete ordering in the engine
    - Keep the facade contract tier-agnostic (found / not found / unavailable)

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
