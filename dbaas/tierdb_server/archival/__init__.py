"""
Archival module for TierDB.

This module moves aged records from the primary store to the archive store:
- ArchivalEngine: one bounded, resumable batch pass per invocation
- ArchivalScheduler: in-process periodic trigger

Invariants:
    - Verify before delete, always
    - Passes never overlap
    - Re-running a pass is idempotent
"""

from .engine import ArchivalEngine, ArchivalRunResult, RecordOutcome
from .scheduler import ArchivalScheduler

__all__ = ["ArchivalEngine", "ArchivalRunResult", "RecordOutcome", "ArchivalScheduler"]
