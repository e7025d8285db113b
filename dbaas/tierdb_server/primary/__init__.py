"""
Primary (hot) store for TierDB.

The primary store holds recently-written records and is the only place
writes land. It provides:
- Point read, write and delete keyed by record_id
- Continuation-token range scans on timestamp for the archival engine
- Compare-and-set status updates and version-conditional deletes

Invariants:
    - Absence is reported as NOT_FOUND, not as an exception
    - Scans never materialize the full result set
"""

from .base import (
    ELIGIBLE_STATUSES,
    ContinuationToken,
    PrimaryStore,
    ScanPage,
    iter_scan,
)
from .sqlite_store import SqlitePrimaryStore

__all__ = [
    "PrimaryStore",
    "ScanPage",
    "ContinuationToken",
    "ELIGIBLE_STATUSES",
    "iter_scan",
    "SqlitePrimaryStore",
]
