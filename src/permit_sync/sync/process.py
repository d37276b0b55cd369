from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from permit_sync.builders import normalize_builder_name
from permit_sync.config import get_settings
from permit_sync.permits.diff import diff_permit_fields
from permit_sync.permits.field_mapping import map_raw_to_permit
from permit_sync.permits.hashing import compute_permit_hash
from permit_sync.permits.models import RawPermitRecord, SyncRun, SyncStats, SyncStatus
from permit_sync.storage import RecordStore
from permit_sync.sync.ingest import PathLike, ingest

logger = logging.getLogger("permit_sync.sync")

OUTCOME_NEW = "new"
OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"

ProgressCallback = Callable[[int, SyncStats, SyncRun], None]


class SyncCancelled(RuntimeError):
    """Raised at a batch boundary when the caller asked the run to stop."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _describe_key(raw: Any) -> Tuple[str, str]:
    if isinstance(raw, Mapping):
        return str(raw.get("PERMIT_NUM") or "?"), str(raw.get("REVISION_NUM") or "?")
    return "?", "?"


def process_record(
    store: RecordStore,
    raw: RawPermitRecord,
    *,
    sync_run_id: Optional[int],
    seen_at: str,
) -> str:
    """Classify one raw record against the store and persist the result.

    Returns one of OUTCOME_NEW, OUTCOME_UPDATED, OUTCOME_UNCHANGED. All
    writes for the record happen in one store transaction.
    """

    permit = map_raw_to_permit(raw)
    data_hash = compute_permit_hash(raw)
    key = permit.key

    stored_hash = store.get_stored_hash(key)
    if stored_hash == data_hash:
        with store.atomic():
            store.touch_last_seen(key, seen_at)
        return OUTCOME_UNCHANGED

    builder_normalized = normalize_builder_name(permit.builder_name) or None
    raw_json = json.dumps(dict(raw), ensure_ascii=True, sort_keys=True, default=str)

    with store.atomic():
        if stored_hash is None:
            store.upsert(
                permit,
                data_hash,
                seen_at=seen_at,
                builder_name_normalized=builder_normalized,
                raw_json=raw_json,
            )
            return OUTCOME_NEW

        previous = store.get_stored_record(key)
        changes = diff_permit_fields(previous, permit)
        store.append_changes(changes, sync_run_id=sync_run_id, changed_at=seen_at)
        store.upsert(
            permit,
            data_hash,
            seen_at=seen_at,
            builder_name_normalized=builder_normalized,
            raw_json=raw_json,
        )
    logger.debug("permit %s/%s updated (%d fields)", key[0], key[1], len(changes))
    return OUTCOME_UPDATED


def process_batch(
    store: RecordStore,
    batch: List[Any],
    *,
    sync_run_id: Optional[int],
    seen_at: Optional[str] = None,
) -> SyncStats:
    """Process records in order; a bad record is counted, not raised.

    Errors listed in store.fatal_errors mean the store is gone and are
    re-raised so the run can be failed.
    """

    now = seen_at or utc_now_iso()
    stats = SyncStats(total=len(batch))
    for raw in batch:
        try:
            outcome = process_record(store, raw, sync_run_id=sync_run_id, seen_at=now)
        except store.fatal_errors:
            raise
        except Exception:
            stats.errors += 1
            permit_num, revision_num = _describe_key(raw)
            logger.warning(
                "error processing permit %s/%s", permit_num, revision_num, exc_info=True
            )
            continue
        if outcome == OUTCOME_NEW:
            stats.new_count += 1
        elif outcome == OUTCOME_UPDATED:
            stats.updated += 1
        else:
            stats.unchanged += 1
    return stats


def run_sync(
    store: RecordStore,
    file_path: PathLike,
    *,
    batch_size: Optional[int] = None,
    snapshot_path: Optional[str] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    on_progress: Optional[ProgressCallback] = None,
    chunk_chars: Optional[int] = None,
    max_record_chars: Optional[int] = None,
) -> SyncRun:
    """Run one full sync of file_path into store.

    The SyncRun row is created as running, updated after every batch and
    finalized as completed or failed. A failure is recorded on the row and
    then re-raised; records processed before it stay committed.
    """

    size = int(batch_size or get_settings().batch_size)
    run = SyncRun(snapshot_path=snapshot_path or str(file_path))
    run.status = SyncStatus.RUNNING
    run.started_at = utc_now_iso()
    store.create_sync_run(run)
    started = time.monotonic()
    logger.info("sync run %s started: %s (batch size %d)", run.id, file_path, size)

    batches = 0

    def _on_batch(batch: List[Any]) -> None:
        nonlocal batches
        if should_stop is not None and should_stop():
            raise SyncCancelled("sync cancelled")
        batches += 1
        stats = process_batch(store, batch, sync_run_id=run.id, seen_at=utc_now_iso())
        run.apply_stats(stats)
        store.update_sync_run(run)
        logger.info(
            "sync run %s batch %d: %d records (new=%d updated=%d unchanged=%d errors=%d)",
            run.id,
            batches,
            stats.total,
            stats.new_count,
            stats.updated,
            stats.unchanged,
            stats.errors,
        )
        if on_progress is not None:
            on_progress(batches, stats, run)

    try:
        total = ingest(
            file_path,
            size,
            _on_batch,
            chunk_chars=chunk_chars,
            max_record_chars=max_record_chars,
        )
        if total != run.records_total:
            raise RuntimeError(
                f"ingested {total} records but accounted for {run.records_total}"
            )
    except Exception as exc:
        run.status = SyncStatus.FAILED
        run.completed_at = utc_now_iso()
        run.duration_ms = int((time.monotonic() - started) * 1000)
        run.error_message = str(exc) or type(exc).__name__
        logger.error("sync run %s failed after %d batches: %s", run.id, batches, run.error_message)
        try:
            store.update_sync_run(run)
        except store.fatal_errors:
            logger.exception("sync run %s could not be marked failed", run.id)
        raise

    run.status = SyncStatus.COMPLETED
    run.completed_at = utc_now_iso()
    run.duration_ms = int((time.monotonic() - started) * 1000)
    store.update_sync_run(run)
    logger.info(
        "sync run %s completed: total=%d new=%d updated=%d unchanged=%d errors=%d",
        run.id,
        run.records_total,
        run.records_new,
        run.records_updated,
        run.records_unchanged,
        run.records_errors,
    )
    return run
