"""Bulk permit sync: streaming ingest plus the per-run orchestrator.

CLI entrypoint is wired via `python -m permit_sync run`.
"""
