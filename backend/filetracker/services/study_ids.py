"""Participant id catalogue: manual, bulk and CSV import, edits and deletes.

Ids are stored trimmed and upper-cased; uniqueness is checked
case-insensitively before every write and backed by a unique index.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from .. import audit, models, timeutils
from ..exceptions import ValidationError
from ..rbac import AuthContext, require_admin
from ..store import DocumentStore

logger = logging.getLogger(__name__)

COLLECTION = "studyIds"
STATUS_LABELS = ("active", "inactive", "completed", "pending")


def normalize_participant_id(value: Any) -> str:
    return str(value or "").strip().upper()


def _existing_ids(db: Session, exclude: UUID | None = None) -> set[str]:
    return {
        entry.participant_id.upper()
        for entry in DocumentStore(db).find(COLLECTION)
        if entry.id != exclude
    }


def _status_label(value: Any) -> str:
    label = str(value or "").strip().lower()
    return label if label in STATUS_LABELS else "active"


def list_study_ids(db: Session, *, active_only: bool = False) -> list[models.StudyId]:
    filters = {"is_active": True} if active_only else None
    return DocumentStore(db).find(COLLECTION, filters, order="participant_id")


def add_study_id(
    db: Session,
    ctx: AuthContext,
    participant_id: str,
    *,
    description: str = "",
    category: str = "",
    notes: str = "",
    status: str = "active",
) -> models.StudyId:
    require_admin(ctx)
    participant_id = normalize_participant_id(participant_id)
    if not participant_id:
        raise ValidationError("Please enter a participant ID")
    if participant_id in _existing_ids(db):
        raise ValidationError("This participant ID already exists")
    store = DocumentStore(db)
    new_id = store.insert(
        COLLECTION,
        {
            "participant_id": participant_id,
            "description": (description or "").strip(),
            "category": (category or "").strip(),
            "notes": (notes or "").strip(),
            "status": _status_label(status),
            "is_active": True,
            "created_by": ctx.user_id,
        },
    )
    logger.info("Study id %s added by %s", participant_id, ctx.email)
    audit.log_action(db, ctx.user_id, "add_study_id", "study_id", new_id, {"participant_id": participant_id})
    return store.get(COLLECTION, new_id)


def bulk_add_study_ids(
    db: Session,
    ctx: AuthContext,
    participant_ids: Iterable[str],
    *,
    description: str = "",
) -> list[models.StudyId]:
    """Add many ids at once; any id that already exists rejects the whole batch."""

    require_admin(ctx)
    ids: list[str] = []
    for raw in participant_ids or []:
        # a single entry may carry a pasted newline-separated block
        for line in str(raw).splitlines():
            value = normalize_participant_id(line)
            if value and value not in ids:
                ids.append(value)
    if not ids:
        raise ValidationError("Please enter at least one participant ID")
    duplicates = [pid for pid in ids if pid in _existing_ids(db)]
    if duplicates:
        raise ValidationError(
            f"Duplicate IDs found: {', '.join(duplicates)}",
            details={"participant_ids": duplicates},
        )
    store = DocumentStore(db)
    added = []
    for participant_id in ids:
        new_id = store.insert(
            COLLECTION,
            {
                "participant_id": participant_id,
                "description": (description or "").strip(),
                "status": "active",
                "is_active": True,
                "created_by": ctx.user_id,
            },
        )
        added.append(store.get(COLLECTION, new_id))
    logger.info("Bulk added %d study ids by %s", len(added), ctx.email)
    audit.log_action(db, ctx.user_id, "bulk_add_study_ids", "study_id", None, {"participant_ids": ids})
    return added


def parse_import(content: str) -> list[dict[str, str]]:
    """Parse a CSV upload with a ``participantId`` (or ``participant_id``) column.

    Rows without an id are dropped; unknown status labels fall back to
    ``active``; an id repeated inside the file is an error.
    """

    reader = csv.DictReader(io.StringIO(content))
    fields = {name.strip(): name for name in (reader.fieldnames or [])}
    id_column = fields.get("participantId") or fields.get("participant_id")
    if id_column is None:
        raise ValidationError("Import file must have a participantId column")

    rows = []
    for row in reader:
        participant_id = normalize_participant_id(row.get(id_column))
        if not participant_id:
            continue
        rows.append(
            {
                "participant_id": participant_id,
                "description": (row.get(fields.get("description", ""), "") or "").strip(),
                "status": _status_label(row.get(fields.get("status", ""))),
                "category": (row.get(fields.get("category", ""), "") or "").strip(),
                "notes": (row.get(fields.get("notes", ""), "") or "").strip(),
            }
        )

    seen: set[str] = set()
    repeated: list[str] = []
    for row in rows:
        if row["participant_id"] in seen and row["participant_id"] not in repeated:
            repeated.append(row["participant_id"])
        seen.add(row["participant_id"])
    if repeated:
        raise ValidationError(f"Duplicate participant IDs found in file: {', '.join(repeated)}")
    return rows


def import_study_ids(db: Session, ctx: AuthContext, content: str) -> dict[str, list]:
    """Insert new ids from a CSV upload, skipping ones already in the catalogue."""

    require_admin(ctx)
    rows = parse_import(content)
    if not rows:
        raise ValidationError("Import file contains no participant IDs")
    existing = _existing_ids(db)
    skipped = [row["participant_id"] for row in rows if row["participant_id"] in existing]
    fresh = [row for row in rows if row["participant_id"] not in existing]
    if not fresh:
        raise ValidationError("All participant IDs already exist in the database")

    store = DocumentStore(db)
    added = []
    for row in fresh:
        new_id = store.insert(COLLECTION, {**row, "is_active": True, "created_by": ctx.user_id})
        added.append(store.get(COLLECTION, new_id))
    if skipped:
        logger.warning("Import skipped %d existing study ids: %s", len(skipped), ", ".join(skipped))
    logger.info("Imported %d study ids by %s", len(added), ctx.email)
    audit.log_action(
        db,
        ctx.user_id,
        "import_study_ids",
        "study_id",
        None,
        {"added": len(added), "skipped": skipped},
    )
    return {"added": added, "skipped": skipped}


def update_study_id(db: Session, ctx: AuthContext, study_id: UUID, values: dict[str, Any]) -> models.StudyId:
    require_admin(ctx)
    store = DocumentStore(db)
    store.get(COLLECTION, study_id)
    changes: dict[str, Any] = {}
    if "participant_id" in values and values["participant_id"] is not None:
        participant_id = normalize_participant_id(values["participant_id"])
        if not participant_id:
            raise ValidationError("Please enter a participant ID")
        if participant_id in _existing_ids(db, exclude=study_id):
            raise ValidationError("This participant ID already exists")
        changes["participant_id"] = participant_id
    for field in ("description", "category", "notes"):
        if values.get(field) is not None:
            changes[field] = values[field].strip()
    if values.get("status") is not None:
        changes["status"] = _status_label(values["status"])
    if values.get("is_active") is not None:
        changes["is_active"] = bool(values["is_active"])
    changes["updated_at"] = timeutils.utcnow()
    entry = store.update(COLLECTION, study_id, changes)
    audit.log_action(db, ctx.user_id, "update_study_id", "study_id", study_id, {"fields": sorted(changes)})
    return entry


def delete_study_id(db: Session, ctx: AuthContext, study_id: UUID) -> None:
    """Hard delete; requests that reference the id keep their copy of it."""

    require_admin(ctx)
    store = DocumentStore(db)
    entry = store.get(COLLECTION, study_id)
    participant_id = entry.participant_id
    store.delete(COLLECTION, study_id)
    logger.info("Study id %s deleted by %s", participant_id, ctx.email)
    audit.log_action(db, ctx.user_id, "delete_study_id", "study_id", study_id, {"participant_id": participant_id})
