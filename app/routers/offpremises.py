from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import UserProfile
from app.routers.common import audit_context
from app.schemas import (
    AttendanceRecordRead,
    OffPremisesDecisionRequest,
    OffPremisesDecisionResponse,
    OffPremisesRequestRead,
    OffPremisesSubmitRequest,
    OffPremisesSubmitResponse,
)
from app.security import require_user
from app.services.hooks import PostCommitHooks
from app.services.offpremises import OffPremisesWorkflow

router = APIRouter(prefix="/attendance/offpremises", tags=["offpremises"])


@router.post("/request", response_model=OffPremisesSubmitResponse)
def submit_offpremises_request(
    payload: OffPremisesSubmitRequest,
    request: Request,
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> OffPremisesSubmitResponse:
    hooks = PostCommitHooks()
    try:
        workflow = OffPremisesWorkflow(db, hooks, context=audit_context(request))
        pending, approvers = workflow.submit(
            user,
            current_location_name=payload.current_location_name,
            google_maps_name=payload.google_maps_name,
            latitude=payload.latitude,
            longitude=payload.longitude,
            accuracy=payload.accuracy,
            device_info=payload.device_info,
            reason=payload.reason,
        )
        return OffPremisesSubmitResponse(
            ok=True,
            request=OffPremisesRequestRead.model_validate(pending),
            approver_count=len(approvers),
        )
    finally:
        hooks.run()


@router.post("/approve", response_model=OffPremisesDecisionResponse)
def decide_offpremises_request(
    payload: OffPremisesDecisionRequest,
    request: Request,
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> OffPremisesDecisionResponse:
    hooks = PostCommitHooks()
    try:
        workflow = OffPremisesWorkflow(db, hooks, context=audit_context(request))
        decided, record = workflow.decide(
            user,
            request_id=payload.request_id,
            approved=payload.approved,
            comments=payload.comments,
        )
        if record is not None:
            request.state.record_id = record.id
        return OffPremisesDecisionResponse(
            ok=True,
            request=OffPremisesRequestRead.model_validate(decided),
            record=AttendanceRecordRead.model_validate(record) if record is not None else None,
        )
    finally:
        hooks.run()


@router.get("/pending", response_model=list[OffPremisesRequestRead])
def list_pending_offpremises_requests(
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[OffPremisesRequestRead]:
    workflow = OffPremisesWorkflow(db)
    return [OffPremisesRequestRead.model_validate(item) for item in workflow.list_pending(user)]
