import csv
import io
from datetime import timedelta

from filetracker import exports, models
from .conftest import NOW


def _rows(content):
    return list(csv.reader(io.StringIO(content)))


def test_requests_csv_flattens_and_quotes():
    request = models.FileRequest(
        user_id="uid-1",
        user_name='Alice "Al" Smith',
        participant_ids=["P-001", "P-002"],
        reason="Review",
        status="active",
        created_at=NOW - timedelta(days=2),
        due_date=NOW - timedelta(days=1),
    )
    rows = _rows(exports.requests_csv([request], now=NOW))
    assert rows[0] == exports.REQUEST_COLUMNS
    assert rows[1][1] == 'Alice "Al" Smith'
    assert rows[1][2] == "P-001, P-002"
    assert rows[1][3] == "overdue"
    assert rows[1][4] == "Oct 17, 2026, 09:00 AM"
    assert rows[1][5] == "Oct 18, 2026, 09:00 AM"
    assert rows[1][6] == ""


def test_study_ids_csv():
    entries = [
        models.StudyId(participant_id="P-1", description="Has, comma", is_active=True, created_at=NOW),
        models.StudyId(participant_id="P-2", description=None, is_active=False, created_at=None),
    ]
    rows = _rows(exports.study_ids_csv(entries))
    assert rows == [
        exports.STUDY_ID_COLUMNS,
        ["P-1", "Has, comma", "Active", "Oct 19, 2026, 09:00 AM"],
        ["P-2", "", "Inactive", ""],
    ]


def test_export_filename():
    assert exports.export_filename("file_requests", NOW) == "file_requests_2026-10-19.csv"
