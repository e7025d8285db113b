"""
Caller-facing record access for TierDB.

Invariants:
    - One get/put/delete contract regardless of tier
    - Writes always land in the primary store
"""

from .facade import RecordAccess

__all__ = ["RecordAccess"]
