from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

FEEDBACK_MODULES = ("rent", "refurb", "epc", "financials")
DEFAULT_WINDOW_DAYS = 90
MIN_WINDOW_DAYS = 1
MAX_WINDOW_DAYS = 365


@dataclass(frozen=True, slots=True)
class ApprovalStat:
    n: int
    approval: float | None


@dataclass(slots=True)
class _VoteTally:
    up: int = 0
    down: int = 0

    def add(self, vote: str) -> None:
        if vote == "up":
            self.up += 1
        else:
            self.down += 1

    def stat(self) -> ApprovalStat:
        return approval_stat(self.up, self.down)


@dataclass(slots=True)
class FeedbackSnapshot:
    window_days: int
    module_approval: dict[str, ApprovalStat] = field(default_factory=dict)
    target_approval: dict[str, ApprovalStat] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "window_days": self.window_days,
            "module_approval": {key: _stat_dict(value) for key, value in self.module_approval.items()},
            "target_approval": {key: _stat_dict(value) for key, value in self.target_approval.items()},
        }


def approval_stat(up: int, down: int) -> ApprovalStat:
    n = up + down
    # No votes is "no data", which must stay distinguishable from 0% approval.
    return ApprovalStat(n=n, approval=(up / n) if n else None)


def clamp_window_days(value: int | None) -> int:
    if value is None:
        return DEFAULT_WINDOW_DAYS
    return max(MIN_WINDOW_DAYS, min(MAX_WINDOW_DAYS, int(value)))


def aggregate_feedback(
    events: Iterable[dict[str, Any]],
    *,
    window_days: int,
    now: datetime,
    property_id: str | None = None,
    target_module: str | None = "refurb",
) -> FeedbackSnapshot:
    since = _as_utc(now) - timedelta(days=window_days)
    modules = {module: _VoteTally() for module in FEEDBACK_MODULES}
    targets: dict[str, _VoteTally] = {}

    for event in events:
        if event.get("kind") != "thumb":
            continue
        vote = event.get("vote")
        if vote not in {"up", "down"}:
            continue
        created_at = event.get("created_at")
        if not isinstance(created_at, datetime) or _as_utc(created_at) < since:
            continue
        if property_id is not None and event.get("property_id") != property_id:
            continue
        module = event.get("module")
        if module not in modules:
            continue

        modules[module].add(vote)
        target_id = event.get("target_id")
        if target_id and (target_module is None or module == target_module):
            targets.setdefault(str(target_id), _VoteTally()).add(vote)

    return FeedbackSnapshot(
        window_days=window_days,
        module_approval={module: tally.stat() for module, tally in modules.items()},
        target_approval={key: targets[key].stat() for key in sorted(targets)},
    )


async def compute_feedback_metrics(
    repository: Any,
    *,
    property_id: str | None,
    window_days: int | None = None,
    now: datetime | None = None,
) -> FeedbackSnapshot:
    """Recompute approval rates from the raw vote log for one window."""
    days = clamp_window_days(window_days)
    current = now or datetime.now(timezone.utc)
    events = await repository.list_thumb_feedback(
        since=current - timedelta(days=days),
        property_id=property_id,
    )
    return aggregate_feedback(events, window_days=days, now=current, property_id=property_id)


def _stat_dict(stat: ApprovalStat) -> dict[str, Any]:
    return {"n": stat.n, "approval": stat.approval}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
