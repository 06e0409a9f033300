from uuid import UUID

from fastapi import APIRouter, Depends, File, Response, UploadFile
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user
from .. import exports, schemas
from ..exceptions import ValidationError
from ..rbac import AuthContext, require_admin
from ..services import study_ids as catalogue
from ._events import broadcast

router = APIRouter(prefix="/api/study-ids", tags=["study-ids"])


@router.get("", response_model=list[schemas.StudyIdOut])
async def list_study_ids(
    active_only: bool = False,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return catalogue.list_study_ids(db, active_only=active_only)


@router.post("", response_model=schemas.StudyIdOut, status_code=201)
async def create_study_id(
    data: schemas.StudyIdCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    entry = catalogue.add_study_id(
        db,
        ctx,
        data.participant_id,
        description=data.description,
        category=data.category,
        notes=data.notes,
        status=data.status,
    )
    await broadcast("studyIds", "study_id_created", {"participant_id": entry.participant_id})
    return entry


@router.post("/bulk", response_model=list[schemas.StudyIdOut], status_code=201)
async def bulk_create_study_ids(
    data: schemas.StudyIdBulkCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    added = catalogue.bulk_add_study_ids(db, ctx, data.participant_ids, description=data.description)
    await broadcast("studyIds", "study_ids_created", {"count": len(added)})
    return added


@router.post("/import", response_model=schemas.StudyIdImportResult)
async def import_study_ids(
    upload: UploadFile = File(...),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    raw = await upload.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("Failed to parse import file. Please upload a UTF-8 CSV file.")
    result = catalogue.import_study_ids(db, ctx, content)
    await broadcast("studyIds", "study_ids_created", {"count": len(result["added"])})
    return result


@router.get("/export")
async def export_study_ids(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    require_admin(ctx)
    filename = exports.export_filename("study_ids")
    return Response(
        content=exports.study_ids_csv(catalogue.list_study_ids(db)),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.put("/{study_id}", response_model=schemas.StudyIdOut)
async def update_study_id(
    study_id: UUID,
    data: schemas.StudyIdUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    entry = catalogue.update_study_id(db, ctx, study_id, data.model_dump(exclude_unset=True))
    await broadcast("studyIds", "study_id_updated", {"id": str(study_id)})
    return entry


@router.delete("/{study_id}")
async def delete_study_id(
    study_id: UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    catalogue.delete_study_id(db, ctx, study_id)
    await broadcast("studyIds", "study_id_deleted", {"id": str(study_id)})
    return {"status": "deleted"}
