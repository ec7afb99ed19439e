from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from app.core.status import normalize_status

DEFAULT_LIMIT = 25
MAX_LIMIT = 100
DEFAULT_OFFSET = 0


class FilterValidationError(ValueError):
    """Raised when a dashboard query parameter cannot be typed."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field


@dataclass(slots=True)
class DashboardFilter:
    from_date: date | None = None
    to_date: date | None = None
    status: str | None = None
    run_id: str | None = None
    property_id: str | None = None
    prop_no: str | None = None
    batch_label: str | None = None
    stage: tuple[str, ...] = ()
    error_code: str | None = None
    q: str | None = None
    raw: bool = False
    offset: int = DEFAULT_OFFSET
    limit: int = DEFAULT_LIMIT

    @property
    def starts_at(self) -> datetime | None:
        if self.from_date is None:
            return None
        return datetime.combine(self.from_date, time.min, tzinfo=timezone.utc)

    @property
    def ends_before(self) -> datetime | None:
        # `to` covers the whole day: the bound is the next midnight, exclusive.
        if self.to_date is None:
            return None
        return datetime.combine(self.to_date + timedelta(days=1), time.min, tzinfo=timezone.utc)


def parse_filters(query: Mapping[str, Any]) -> DashboardFilter:
    return DashboardFilter(
        from_date=_parse_date(query, "from"),
        to_date=_parse_date(query, "to"),
        status=_parse_status(query),
        run_id=_text(query, "run_id"),
        property_id=_text(query, "property_id"),
        prop_no=_text(query, "prop_no"),
        batch_label=_text(query, "batch_label"),
        stage=_parse_list(query, "stage"),
        error_code=_text(query, "error_code"),
        q=_text(query, "q"),
        raw=(_text(query, "raw") or "").lower() in {"1", "true"},
        offset=max(DEFAULT_OFFSET, _parse_int(query, "offset", default=DEFAULT_OFFSET)),
        limit=max(1, min(MAX_LIMIT, _parse_int(query, "limit", default=DEFAULT_LIMIT))),
    )


def _text(query: Mapping[str, Any], key: str) -> str | None:
    value = query.get(key)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def _parse_list(query: Mapping[str, Any], key: str) -> tuple[str, ...]:
    getlist = getattr(query, "getlist", None)
    values = getlist(key) if getlist is not None else query.get(key)
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    items: list[str] = []
    for value in values:
        for part in str(value).split(","):
            stripped = part.strip()
            if stripped and stripped not in items:
                items.append(stripped)
    return tuple(items)


def _parse_status(query: Mapping[str, Any]) -> str | None:
    raw = _text(query, "status")
    if raw is None:
        return None
    return normalize_status(raw)


def _parse_int(query: Mapping[str, Any], key: str, *, default: int) -> int:
    raw = _text(query, key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise FilterValidationError(key, f"expected an integer, got {raw!r}") from exc


def _parse_date(query: Mapping[str, Any], key: str) -> date | None:
    raw = _text(query, key)
    if raw is None:
        return None
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError as exc:
        raise FilterValidationError(key, f"expected an ISO date (YYYY-MM-DD), got {raw!r}") from exc
