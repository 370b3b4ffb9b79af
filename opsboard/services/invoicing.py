"""
Finance review queue: finished jobs that still need invoicing or payment.
"""
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .booking_conflicts import expand_booking_dates
from .dates import parse_ymd

FINANCE_STATUSES = ("Ready to Invoice", "Invoiced", "Paid", "Action Required")

_READY_RE = re.compile(r"ready\s*[-_\s]*to\s*[-_\s]*invoice")
_JOB_RE = re.compile(r"^\d{4}$")


def prettify_status(raw: Optional[str]) -> str:
    s = (raw or "").strip().lower()
    if _READY_RE.search(s):
        return "Ready to Invoice"
    if s == "invoiced":
        return "Invoiced"
    if s in ("paid", "settled"):
        return "Paid"
    if s in ("complete", "completed"):
        return "Complete"
    if "action" in s:
        return "Action Required"
    if s == "confirmed":
        return "Confirmed"
    return s[0].upper() + s[1:] if s else "TBC"


def is_four_digit_job(booking: Any) -> bool:
    return bool(_JOB_RE.match(str(booking.job_number or "").strip()))


def is_paid(booking: Any) -> bool:
    s = (booking.status or "").strip().lower()
    inv = (booking.invoice_status or "").lower()
    return s in ("paid", "settled") or "paid" in inv


def last_day(booking: Any) -> Optional[date]:
    days = [parse_ymd(d) for d in expand_booking_dates(booking)]
    days = [d for d in days if d]
    return max(days) if days else None


def first_day(booking: Any) -> Optional[date]:
    days = [parse_ymd(d) for d in expand_booking_dates(booking)]
    days = [d for d in days if d]
    return min(days) if days else None


def finished_before(booking: Any, today: date) -> bool:
    last = last_day(booking)
    return bool(last and last < today)


def needs_review(booking: Any, today: date) -> bool:
    if not is_four_digit_job(booking) or is_paid(booking):
        return False
    s = (booking.status or "").strip().lower()
    if _READY_RE.search(s):
        return True
    return s in ("confirmed", "complete", "completed") and finished_before(booking, today)


def review_queue(
    bookings: Iterable[Any],
    today: date,
    client: Optional[str] = None,
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    q: Optional[str] = None,
    overdue_only: bool = False,
) -> List[Dict[str, Any]]:
    """Queue rows, newest last-day first."""
    queue = [b for b in bookings if needs_review(b, today)]
    needle = (q or "").strip().lower()
    rows = []
    for b in queue:
        pretty = prettify_status(b.status)
        if client and client != "all" and (b.client or "") != client:
            continue
        if status and status != "all" and pretty != status:
            continue
        if overdue_only and not finished_before(b, today):
            continue
        first, last = first_day(b), last_day(b)
        if date_from or date_to:
            if not first:
                continue
            if date_from and last < date_from:
                continue
            if date_to and first > date_to:
                continue
        if needle:
            haystack = " ".join(str(x or "") for x in (b.job_number, b.client, b.location, b.notes)).lower()
            if needle not in haystack:
                continue
        rows.append({
            "id": str(b.id),
            "job_number": b.job_number,
            "client": b.client,
            "location": b.location,
            "status": b.status,
            "status_label": pretty,
            "invoice_status": b.invoice_status,
            "first_date": first.isoformat() if first else None,
            "last_date": last.isoformat() if last else None,
            "overdue": finished_before(b, today),
        })
    rows.sort(key=lambda r: r["last_date"] or "", reverse=True)
    return rows
