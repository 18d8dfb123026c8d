"""
Daily plan: pick today's tasks across active projects by project weight.

Weights are relative effort shares (the bulk project gets ~4 tasks, small
ones get 1). Working week is Sunday–Thursday.
"""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

DEFAULT_WEIGHT = 5

# Monday == 0; Friday and Saturday are off
DAYS_OFF = {4, 5}

# Preferred columns, most urgent first
PLAN_COLUMNS = ("upnext", "in_progress", "todo")


def local_today(tz: str, now: Optional[datetime] = None) -> date:
    zone = ZoneInfo(tz)
    moment = now.astimezone(zone) if now else datetime.now(zone)
    return moment.date()


def is_working_day(day: date) -> bool:
    return day.weekday() not in DAYS_OFF


def already_planned(content: Dict[str, Any], day: date) -> bool:
    plan = content.get("todayPlan") or {}
    return plan.get("date") == day.isoformat() and bool(plan.get("tasks"))


def plan_today(content: Dict[str, Any], weights: Dict[str, int]) -> List[Dict[str, Any]]:
    """Return today's task picks for a raw status document."""
    planned = []
    for project in content.get("projects") or []:
        if project.get("status", "active") != "active":
            continue
        weight = weights.get(project.get("id"), DEFAULT_WEIGHT)
        tasks = project.get("tasks") or {}
        done_ids = {t.get("id") for t in tasks.get("done") or []}
        available = [
            t for col in PLAN_COLUMNS for t in tasks.get(col) or []
            if t.get("id") not in done_ids
        ]
        if not available:
            continue
        # Half rounds up (round() would send 2.5 to 2)
        count = max(1, min(len(available), int(weight / 10 + 0.5)))
        for task in available[:count]:
            planned.append({
                "taskId": task.get("id"),
                "projectId": project.get("id"),
                "title": task.get("title", ""),
                "priority": task.get("priority") or "medium",
            })
    return planned
