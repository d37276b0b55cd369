"""Permit synchronization and change-detection pipeline.

Ingests a bulk JSON export of building permits, decides per record whether
it is new, changed or unchanged since the last run, records field-level
deltas and keeps run-level accounting in a record store.
"""

__all__ = ["run_sync", "SQLitePermitStore"]


def __getattr__(name: str):
    if name == "run_sync":
        from .sync.process import run_sync

        return run_sync
    if name == "SQLitePermitStore":
        from .storage import SQLitePermitStore

        return SQLitePermitStore
    raise AttributeError(name)
