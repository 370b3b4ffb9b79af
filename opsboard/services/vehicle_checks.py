"""
Vehicle check compliance and defect workflow.

Every confirmed booking day up to today should have a submitted check per
job. Defect items found on submitted checks go through review (approved as
immediate/general, or declined) and then maintenance tracking.
"""
import copy
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .booking_conflicts import crew_for_date, expand_booking_dates
from .dates import parse_ymd, to_ymd

MISSING = "MISSING"
DRAFT = "DRAFT"
OK = "OK"
DEFECT = "DEFECT"

STATE_WEIGHT = {DEFECT: 3, MISSING: 2, DRAFT: 1, OK: 0}

COMPLIANCE_STATUSES = {"confirmed"}

REVIEW_STATUSES = {"approved", "declined"}
DEFECT_CATEGORIES = {"immediate", "general"}
MAINTENANCE_STATUSES = {"scheduled", "in_progress", "resolved"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def has_defect(check: Any) -> bool:
    return any((item or {}).get("status") == "defect" for item in (check.items or []))


def check_state(checks: List[Any]) -> str:
    if not checks:
        return MISSING
    submitted = [c for c in checks if (c.status or "").lower() == "submitted"]
    if not submitted:
        return DRAFT
    if any(has_defect(c) for c in submitted):
        return DEFECT
    return OK


def compliance_rows(
    bookings: Iterable[Any],
    checks: Iterable[Any],
    today: date,
    vehicle_names: Optional[Dict[str, str]] = None,
) -> List[Dict[str, Any]]:
    """One row per confirmed booking day up to and including today."""
    vehicle_names = vehicle_names or {}
    by_job_day: Dict[tuple, List[Any]] = {}
    for c in checks:
        key = (str(c.job_id), to_ymd(c.date))
        by_job_day.setdefault(key, []).append(c)

    rows = []
    for b in bookings:
        if (b.status or "").strip().lower() not in COMPLIANCE_STATUSES:
            continue
        for ymd in expand_booking_dates(b):
            d = parse_ymd(ymd)
            if not d or d > today:
                continue
            day_checks = by_job_day.get((str(b.id), ymd), [])
            rows.append({
                "booking_id": str(b.id),
                "job_number": b.job_number,
                "client": b.client,
                "location": b.location,
                "date": ymd,
                "employees": sorted({m["name"] for m in crew_for_date(b, ymd) if m.get("name")}),
                "vehicles": [vehicle_names.get(str(v), str(v)) for v in (b.vehicles or [])],
                "state": check_state(day_checks),
                "check_ids": [str(c.id) for c in day_checks],
            })
    return rows


def compliance_kpis(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    total = len(rows)
    missing = sum(1 for r in rows if r["state"] == MISSING)
    drafts = sum(1 for r in rows if r["state"] == DRAFT)
    defects = sum(1 for r in rows if r["state"] == DEFECT)
    submitted_ok = sum(1 for r in rows if r["state"] == OK)
    completion = round((submitted_ok + defects) / total * 100) if total else 0
    return {
        "total_required": total,
        "missing": missing,
        "drafts": drafts,
        "defects": defects,
        "submitted_ok": submitted_ok,
        "completion_pct": completion,
    }


def filter_compliance(
    rows: List[Dict[str, Any]],
    only: str = "all",
    q: Optional[str] = None,
    sort: str = "date_desc",
) -> List[Dict[str, Any]]:
    out = rows
    if only == "missing":
        out = [r for r in out if r["state"] in (MISSING, DRAFT)]
    elif only == "defects":
        out = [r for r in out if r["state"] == DEFECT]
    if q:
        needle = q.strip().lower()
        out = [
            r for r in out
            if needle in " ".join(
                [str(r["job_number"] or ""), r["client"] or "", r["location"] or ""]
                + r["employees"] + r["vehicles"]
            ).lower()
        ]
    # Stable two-pass sort: risk first within each date
    out = sorted(out, key=lambda r: STATE_WEIGHT[r["state"]], reverse=True)
    return sorted(out, key=lambda r: r["date"], reverse=(sort != "date_asc"))


# ---------- Defects ----------

def iter_defects(checks: Iterable[Any]) -> List[Dict[str, Any]]:
    """Flatten defect items from submitted checks."""
    out = []
    for c in checks:
        if (c.status or "").lower() != "submitted":
            continue
        for index, item in enumerate(c.items or []):
            if (item or {}).get("status") != "defect":
                continue
            out.append({
                "check_id": str(c.id),
                "index": index,
                "job_id": str(c.job_id) if c.job_id else None,
                "job_number": c.job_number,
                "date": to_ymd(c.date),
                "vehicle": c.vehicle,
                "driver_name": c.driver_name,
                "label": item.get("label"),
                "note": item.get("note"),
                "review": item.get("review"),
                "maintenance": item.get("maintenance"),
            })
    return out


def defect_stage(defect: Dict[str, Any]) -> str:
    review = defect.get("review") or {}
    status = review.get("status")
    if status == "declined":
        return "declined"
    if status == "approved":
        return review.get("category") if review.get("category") in DEFECT_CATEGORIES else "general"
    return "review"


def filter_defects(
    defects: List[Dict[str, Any]],
    stage: str,
    status: str = "all",
    q: Optional[str] = None,
) -> List[Dict[str, Any]]:
    out = [d for d in defects if defect_stage(d) == stage]
    if status and status != "all":
        if status == "pending":
            out = [d for d in out if not (d.get("maintenance") or {}).get("status")]
        else:
            out = [d for d in out if (d.get("maintenance") or {}).get("status") == status]
    if q:
        needle = q.strip().lower()
        out = [
            d for d in out
            if needle in " ".join(
                str(d.get(k) or "") for k in ("vehicle", "driver_name", "job_number", "label", "note")
            ).lower()
        ]
    return sorted(out, key=lambda d: (d["date"] or "", d["check_id"], d["index"]), reverse=True)


def _defect_item(items: Optional[list], index: int) -> tuple:
    updated = copy.deepcopy(items or [])
    if index < 0 or index >= len(updated):
        raise ValueError("Check item not found")
    item = updated[index] or {}
    if item.get("status") != "defect":
        raise ValueError("Check item is not a defect")
    return updated, item


def apply_review(
    items: Optional[list],
    index: int,
    status: str,
    category: Optional[str],
    reason: Optional[str],
    reviewer: Optional[str],
) -> list:
    """Return a new items list with the review recorded on item[index]."""
    if status not in REVIEW_STATUSES:
        raise ValueError("Review status must be approved or declined")
    if status == "approved" and category not in DEFECT_CATEGORIES:
        raise ValueError("Approved defects need a category of immediate or general")
    updated, item = _defect_item(items, index)
    item["review"] = {
        "status": status,
        "category": category if status == "approved" else None,
        "reason": reason,
        "reviewed_by": reviewer,
        "reviewed_at": _now_iso(),
    }
    updated[index] = item
    return updated


def apply_maintenance(
    items: Optional[list],
    index: int,
    status: str,
    note: Optional[str],
    updated_by: Optional[str],
) -> list:
    if status not in MAINTENANCE_STATUSES:
        raise ValueError("Maintenance status must be scheduled, in_progress or resolved")
    updated, item = _defect_item(items, index)
    if (item.get("review") or {}).get("status") != "approved":
        raise ValueError("Only approved defects can be tracked")
    item["maintenance"] = {
        "status": status,
        "note": note,
        "updated_at": _now_iso(),
        "updated_by": updated_by,
    }
    updated[index] = item
    return updated


def reroute(items: Optional[list], index: int, category: str, updated_by: Optional[str]) -> list:
    if category not in DEFECT_CATEGORIES:
        raise ValueError("Category must be immediate or general")
    updated, item = _defect_item(items, index)
    review = dict(item.get("review") or {})
    if review.get("status") != "approved":
        raise ValueError("Only approved defects can be rerouted")
    review["category"] = category
    review["rerouted_by"] = updated_by
    review["rerouted_at"] = _now_iso()
    item["review"] = review
    updated[index] = item
    return updated
