"""
Coach Tools

Bounded data tools the decision agent can ask for (a use_tool decision).
All of them read the member's context snapshot; none touch the source
tables, so a tool call costs no more than the snapshot read.

Each tool returns:
  {
    "ok": bool,
    "tool": "<tool_name>",
    "generated_at": "<iso8601>",
    "data": {...},
    "evidence": [{...}]
  }
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from schemas import MemberSnapshot
from services.recovery_model import (
    STATUS_FATIGUED,
    STATUS_RECOVERING,
    STATUS_READY,
    as_utc,
    recovery_from_json,
)

logger = logging.getLogger(__name__)


def _iso(dt: datetime) -> str:
    return dt.replace(microsecond=0).isoformat()


def _envelope(tool: str, data: Dict[str, Any], snapshot: MemberSnapshot, now: datetime) -> Dict[str, Any]:
    return {
        "ok": True,
        "tool": tool,
        "generated_at": _iso(now),
        "data": data,
        "evidence": [
            {
                "type": "member_context_snapshot",
                "snapshot_version": snapshot.snapshot_version,
                "last_updated": _iso(as_utc(snapshot.last_updated)),
            }
        ],
    }


def check_recovery(snapshot: MemberSnapshot, now: datetime) -> Dict[str, Any]:
    recovery = recovery_from_json({m: e.model_dump() for m, e in snapshot.muscle_recovery_status.items()})
    by_status = {STATUS_READY: [], STATUS_RECOVERING: [], STATUS_FATIGUED: []}
    hours: Dict[str, Optional[float]] = {}
    for muscle, state in recovery.items():
        by_status.setdefault(state.status, []).append(muscle)
        hours[muscle] = state.to_dict()["hours_since_worked"]

    return _envelope(
        "check_recovery",
        {
            "ready": by_status[STATUS_READY],
            "recovering": by_status[STATUS_RECOVERING],
            "fatigued": by_status[STATUS_FATIGUED],
            "hours_since_worked": hours,
            "needs_deload": snapshot.needs_deload,
        },
        snapshot,
        now,
    )


def check_schedule(snapshot: MemberSnapshot, now: datetime) -> Dict[str, Any]:
    last = as_utc(snapshot.last_workout_date)
    return _envelope(
        "check_schedule",
        {
            "last_workout_date": _iso(last) if last else None,
            "days_since_last_workout": max(0, (now - last).days) if last else None,
            "weekly_workout_avg": snapshot.weekly_workout_avg,
            "consecutive_training_weeks": snapshot.consecutive_training_weeks,
        },
        snapshot,
        now,
    )


def check_history(snapshot: MemberSnapshot, now: datetime) -> Dict[str, Any]:
    return _envelope(
        "check_history",
        {
            "recent_personal_records": [pr.model_dump() for pr in snapshot.personal_records[:5]],
            "avg_workout_duration_min": snapshot.avg_workout_duration,
            "skills": [s.model_dump() for s in snapshot.skills],
        },
        snapshot,
        now,
    )


def check_goals(snapshot: MemberSnapshot, now: datetime) -> Dict[str, Any]:
    return _envelope(
        "check_goals",
        {
            "goals": [
                {
                    "title": g.title,
                    "category": g.category,
                    "progress_percent": round(g.progress_percent, 1),
                    "target_date": g.target_date,
                }
                for g in snapshot.active_goals
            ],
        },
        snapshot,
        now,
    )


TOOLS: Dict[str, Callable[[MemberSnapshot, datetime], Dict[str, Any]]] = {
    "check_recovery": check_recovery,
    "check_schedule": check_schedule,
    "check_history": check_history,
    "check_goals": check_goals,
}


def run_tool(tool: str, snapshot: MemberSnapshot, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) or datetime.now(timezone.utc)
    fn = TOOLS.get(tool)
    if fn is None:
        logger.warning(f"Unknown coach tool requested: {tool}")
        return {"ok": False, "tool": tool, "generated_at": _iso(now), "error": f"Unknown tool: {tool}"}
    return fn(snapshot, now)
