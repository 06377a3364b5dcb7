"""Plain records exchanged between callers and the reconciliation engine."""
from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from okrpilot.categories import DEFAULT_PRIORITY, UNCATEGORIZED

DEFAULT_DEADLINE_DAYS = 14


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def default_deadline(today: date | None = None, days: int = DEFAULT_DEADLINE_DAYS) -> str:
    """Deadline used when nothing better is known: ``days`` from today, YYYY-MM-DD."""
    base = today or date.today()
    return (base + timedelta(days=days)).isoformat()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class WorkItem:
    """An active objective or key result owned by the caller."""
    id: str
    title: str = ""
    notes: str = ""
    scope: str = ""
    deadline: str = ""
    category: str = UNCATEGORIZED
    priority: str = DEFAULT_PRIORITY
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkItem":
        """Build from an API-shaped record; accepts camelCase or snake_case timestamps."""
        return cls(
            id=_text(data.get("id")),
            title=_text(data.get("title")),
            notes=_text(data.get("notes")),
            scope=_text(data.get("scope")),
            deadline=_text(data.get("deadline")),
            category=_text(data.get("category")),
            priority=_text(data.get("priority")),
            created_at=_text(data.get("createdAt", data.get("created_at"))),
            updated_at=_text(data.get("updatedAt", data.get("updated_at"))),
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "WorkItem":
        """Build from a storage row (snake_case columns, extra columns ignored)."""
        return cls(
            id=_text(row.get("id")),
            title=_text(row.get("title")),
            notes=_text(row.get("notes")),
            scope=_text(row.get("scope")),
            deadline=_text(row.get("deadline")),
            category=_text(row.get("category")),
            priority=_text(row.get("priority")),
            created_at=_text(row.get("created_at")),
            updated_at=_text(row.get("updated_at")),
        )

    def to_prompt_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "scope": self.scope,
            "deadline": self.deadline,
            "category": self.category,
            "priority": self.priority,
            "notes": self.notes,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class UpdateRecord:
    """Engine output for one work item."""
    id: str
    category: str
    priority: str
    scope: str
    deadline: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class PriorityQuestion:
    id: str
    question: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class CompletedWorkItem:
    item: WorkItem
    completed_at: str
    expected_vs_actual_days: int

    def to_dict(self) -> Dict[str, Any]:
        payload = self.item.to_prompt_dict()
        payload["completedAt"] = self.completed_at
        payload["expectedVsActualDays"] = self.expected_vs_actual_days
        return payload


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def expected_vs_actual_days(deadline: str, completed_at: str) -> int:
    """Days between the deadline (midnight UTC) and completion; negative means early."""
    expected = datetime.fromisoformat(deadline[:10]).replace(tzinfo=timezone.utc)
    actual = _parse_instant(completed_at)
    return round((actual - expected).total_seconds() / 86400)


def complete_work_item(item: WorkItem, completed_at: Optional[str] = None) -> CompletedWorkItem:
    stamp = completed_at or _now_iso()
    delta = 0
    if item.deadline:
        try:
            delta = expected_vs_actual_days(item.deadline, stamp)
        except ValueError:
            delta = 0
    return CompletedWorkItem(
        item=replace(item, updated_at=stamp),
        completed_at=stamp,
        expected_vs_actual_days=delta,
    )


def apply_updates(items: Iterable[WorkItem], updates: Iterable[UpdateRecord]) -> List[WorkItem]:
    """Return copies of ``items`` with matching updates applied; others are unchanged."""
    by_id = {update.id: update for update in updates}
    stamp = _now_iso()
    merged: List[WorkItem] = []
    for item in items:
        update = by_id.get(item.id)
        if update is None:
            merged.append(item)
            continue
        merged.append(replace(
            item,
            category=update.category,
            priority=update.priority,
            scope=update.scope,
            deadline=update.deadline,
            updated_at=stamp,
        ))
    return merged
