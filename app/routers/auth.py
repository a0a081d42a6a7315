from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import UserProfile
from app.routers.common import client_ip
from app.schemas import DeviceBindingCheckRequest, DeviceBindingCheckResponse
from app.security import require_user
from app.services.device_binding import DeviceBindingGuard
from app.services.hooks import PostCommitHooks

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/check-device-binding", response_model=DeviceBindingCheckResponse)
def check_device_binding(
    payload: DeviceBindingCheckRequest,
    request: Request,
    user: UserProfile = Depends(require_user),
    db: Session = Depends(get_db),
) -> DeviceBindingCheckResponse:
    hooks = PostCommitHooks()
    try:
        result = DeviceBindingGuard(db, hooks).check_and_bind(
            device_id=payload.device_id,
            user=user,
            device_info=payload.device_info,
            ip=client_ip(request),
        )
        request.state.flags = result.to_dict()
        return DeviceBindingCheckResponse(**result.to_dict())
    finally:
        hooks.run()
