import hashlib
import json

from permit_sync.permits.models import RawPermitRecord


def compute_permit_hash(raw: RawPermitRecord) -> str:
    """SHA-256 hex digest of a raw feed record.

    Keys are sorted before serializing so key order never affects the
    digest. Equal digests are treated as equal content.
    """

    payload = json.dumps(
        dict(raw),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
