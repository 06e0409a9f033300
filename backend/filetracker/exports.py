import csv
import io
from datetime import datetime
from typing import Iterable

from . import models, timeutils
from .services.requests import effective_status

REQUEST_COLUMNS = ["ID", "User", "Participant IDs", "Status", "Created", "Due Date", "Returned"]
STUDY_ID_COLUMNS = ["Participant ID", "Description", "Status", "Created Date"]


def _date(value) -> str:
    return timeutils.format_date(value) if value else ""


def requests_csv(requests: Iterable[models.FileRequest], now: datetime | None = None) -> str:
    """One row per request; status is the effective status at ``now``."""

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(REQUEST_COLUMNS)
    for r in requests:
        writer.writerow(
            [
                str(r.id),
                r.user_name or r.user_email or "",
                ", ".join(r.participant_ids or []),
                effective_status(r, now),
                _date(r.created_at),
                _date(r.due_date),
                _date(r.returned_at),
            ]
        )
    return buf.getvalue()


def study_ids_csv(entries: Iterable[models.StudyId]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(STUDY_ID_COLUMNS)
    for entry in entries:
        writer.writerow(
            [
                entry.participant_id,
                entry.description or "",
                "Active" if entry.is_active else "Inactive",
                _date(entry.created_at),
            ]
        )
    return buf.getvalue()


def export_filename(prefix: str, today: datetime | None = None) -> str:
    today = today or timeutils.utcnow()
    return f"{prefix}_{today.strftime('%Y-%m-%d')}.csv"
