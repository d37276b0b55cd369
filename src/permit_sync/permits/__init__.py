"""Permit record shapes and the pure per-record transforms.

Nothing in this package performs I/O: mapping, hashing and diffing are
plain functions over one record at a time.
"""

from .models import CanonicalPermit, PermitChange, RawPermitRecord, SyncRun, SyncStatus

__all__ = ["CanonicalPermit", "PermitChange", "RawPermitRecord", "SyncRun", "SyncStatus"]
