from __future__ import annotations

SUCCESS = "success"
FAILED = "failed"
PROCESSING = "processing"
QUEUED = "queued"

CANONICAL_STATUSES = (SUCCESS, FAILED, PROCESSING, QUEUED)

_STATUS_ALIASES: dict[str, str] = {
    "completed": SUCCESS,
    "success": SUCCESS,
    "failed": FAILED,
    "processing": PROCESSING,
    "queued": QUEUED,
}


def normalize_status(raw: str | None) -> str:
    """Map a raw job/run status onto the canonical taxonomy.

    Blank input means the row has not been picked up yet and reads as
    ``queued``. Strings outside the alias table come back trimmed but otherwise
    untouched so callers can tell them apart from the canonical buckets.
    """
    if raw is None:
        return QUEUED
    stripped = str(raw).strip()
    if not stripped:
        return QUEUED
    return _STATUS_ALIASES.get(stripped.lower(), stripped)


def is_canonical_status(value: str | None) -> bool:
    return value in CANONICAL_STATUSES


def raw_statuses_for(canonical: str) -> tuple[str, ...]:
    """Raw spellings (lower-cased) stored for a canonical status.

    ``queued`` additionally matches null/blank rows; the query layer handles
    that case itself.
    """
    return tuple(sorted(raw for raw, target in _STATUS_ALIASES.items() if target == canonical))
