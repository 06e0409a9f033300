from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user
from .. import exports, schemas
from ..exceptions import ValidationError
from ..rbac import AuthContext, require_admin
from ..services import requests as lifecycle
from ._events import broadcast

router = APIRouter(prefix="/api/requests", tags=["requests"])


def _request_payload(request) -> dict:
    return schemas.FileRequestOut.model_validate(request).model_dump(mode="json")


@router.post("", response_model=schemas.FileRequestCreated, status_code=201)
async def submit_request(
    data: schemas.FileRequestCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    request_id = lifecycle.submit_request(
        db,
        ctx,
        data.participant_ids,
        data.reason,
        on_behalf_of=data.on_behalf_of,
    )
    await broadcast("fileRequests", "request_created", {"id": str(request_id)})
    return schemas.FileRequestCreated(id=request_id)


@router.get("", response_model=list[schemas.FileRequestOut])
async def list_requests(
    status: Optional[str] = Query(None, description="Filter by effective status"),
    user_id: Optional[str] = Query(None, description="Admins only: one requester"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return lifecycle.list_requests(db, ctx, status=status, user_id=user_id)


@router.get("/stats", response_model=schemas.RequestStats)
async def request_stats(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return lifecycle.request_stats(db, ctx)


@router.get("/overdue", response_model=schemas.OverdueSummary)
async def overdue_requests(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    summary = lifecycle.overdue_summary(db, ctx)
    items = [
        schemas.OverdueRequestOut(
            **schemas.FileRequestOut.model_validate(item["request"]).model_dump(),
            severity=item["severity"],
            time_overdue=item["time_overdue"],
        )
        for item in summary["requests"]
    ]
    return schemas.OverdueSummary(**{**summary, "requests": items})


@router.get("/availability", response_model=list[schemas.AvailabilityOut])
async def availability(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return lifecycle.list_availability(db)


@router.get("/export")
async def export_requests(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    require_admin(ctx)
    rows = lifecycle.list_requests(db, ctx, status=status)
    filename = exports.export_filename("file_requests")
    return Response(
        content=exports.requests_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/bulk", response_model=schemas.BulkActionOut)
async def bulk_action(
    data: schemas.BulkActionIn,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    results = lifecycle.bulk_action(db, ctx, data.action, data.request_ids, note=data.note)
    succeeded = [r for r in results if r["ok"]]
    if succeeded:
        await broadcast(
            "fileRequests",
            "requests_updated",
            {"action": data.action, "ids": [str(r["request_id"]) for r in succeeded]},
        )
    return schemas.BulkActionOut(
        action=data.action,
        succeeded=len(succeeded),
        failed=len(results) - len(succeeded),
        results=results,
    )


@router.get("/{request_id}", response_model=schemas.FileRequestOut)
async def get_request(
    request_id: UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    return lifecycle.get_request(db, ctx, request_id)


@router.post("/{request_id}/decision", response_model=schemas.FileRequestOut)
async def decide(
    request_id: UUID,
    data: schemas.DecisionIn,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    request = lifecycle.decide(db, ctx, request_id, data.approve, note=data.note)
    await broadcast("fileRequests", "request_updated", _request_payload(request))
    return request


@router.post("/{request_id}/return", response_model=schemas.FileRequestOut)
async def mark_returned(
    request_id: UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    request = lifecycle.mark_returned(db, ctx, request_id)
    await broadcast("fileRequests", "request_updated", _request_payload(request))
    return request


@router.post("/{request_id}/overdue", response_model=schemas.FileRequestOut)
async def mark_overdue(
    request_id: UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    request = lifecycle.mark_overdue(db, ctx, request_id)
    await broadcast("fileRequests", "request_updated", _request_payload(request))
    return request


@router.delete("/{request_id}")
async def delete_request(
    request_id: UUID,
    confirm: bool = Query(False, description="Must be true; deletion is irreversible"),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_current_user),
):
    if not confirm:
        raise ValidationError("Deleting a request is irreversible; pass confirm=true")
    lifecycle.delete_request(db, ctx, request_id)
    await broadcast("fileRequests", "request_deleted", {"id": str(request_id)})
    return {"status": "deleted"}
