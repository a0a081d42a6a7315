from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.audit import AuditContext, log_audit
from app.errors import ApiError
from app.models import (
    AttendanceRecord,
    AuditActorType,
    OffPremisesStatus,
    PendingOffPremisesCheckin,
    UserProfile,
    UserRole,
)
from app.services.attendance import AttendanceService, StaleClosure
from app.services.hooks import PostCommitHooks
from app.services.notifications import create_staff_notification
from app.services.permissions import (
    can_approve_offpremises,
    can_review_offpremises,
    ensure_can_approve_offpremises,
)
from app.services.timeutils import local_day, normalize_ts

logger = logging.getLogger("app.offpremises")

APPROVER_ROLES = (UserRole.DEPARTMENT_HEAD, UserRole.REGIONAL_MANAGER)


def _load_user(db: Session, user_id: int) -> UserProfile | None:
    return db.scalar(select(UserProfile).where(UserProfile.id == user_id))


def _department_approvers(db: Session, department_id: int | None) -> list[UserProfile]:
    if department_id is None:
        return []
    return list(
        db.scalars(
            select(UserProfile)
            .where(
                UserProfile.department_id == department_id,
                UserProfile.role.in_(APPROVER_ROLES),
                UserProfile.is_active.is_(True),
            )
            .order_by(UserProfile.id.asc())
        ).all()
    )


def _find_request_for_update(db: Session, request_id: int) -> PendingOffPremisesCheckin | None:
    return db.scalar(
        select(PendingOffPremisesCheckin)
        .where(PendingOffPremisesCheckin.id == request_id)
        .with_for_update()
    )


def _pending_requests(db: Session) -> list[PendingOffPremisesCheckin]:
    return list(
        db.scalars(
            select(PendingOffPremisesCheckin)
            .options(selectinload(PendingOffPremisesCheckin.user))
            .where(PendingOffPremisesCheckin.status == OffPremisesStatus.PENDING)
            .order_by(PendingOffPremisesCheckin.created_at.asc())
        ).all()
    )


def _approval_conflict(code: str, request_id: int, details: dict[str, Any] | None = None) -> ApiError:
    # The request stays pending; denial is the only decision left to the approver.
    return ApiError(
        status_code=400,
        code=code,
        message=(
            "The requester already has attendance for that day, so this request cannot be approved. "
            "It is still pending and can be denied."
        ),
        details={**(details or {}), "request_id": request_id, "can_deny": True},
    )


class OffPremisesWorkflow:
    """Pending off-premises check-ins and their one-time manager decision."""

    def __init__(
        self,
        db: Session,
        hooks: PostCommitHooks | None = None,
        *,
        attendance: AttendanceService | None = None,
        context: AuditContext | None = None,
    ) -> None:
        self.db = db
        self.hooks = hooks if hooks is not None else PostCommitHooks()
        self.context = context or AuditContext()
        self.attendance = attendance or AttendanceService(db, self.hooks, context=self.context)

    def resolve_approvers(self, user: UserProfile) -> list[UserProfile]:
        if user.manager_id is not None:
            manager = user.manager or _load_user(self.db, user.manager_id)
            if manager is not None and manager.is_active:
                return [manager]
        return [
            candidate
            for candidate in _department_approvers(self.db, user.department_id)
            if candidate.id != user.id
        ]

    def submit(
        self,
        user: UserProfile,
        *,
        current_location_name: str,
        latitude: float,
        longitude: float,
        google_maps_name: str | None = None,
        accuracy: float | None = None,
        device_info: str | None = None,
        reason: str | None = None,
        now_utc: datetime | None = None,
    ) -> tuple[PendingOffPremisesCheckin, list[UserProfile]]:
        now = normalize_ts(now_utc)
        self.attendance.ensure_no_record_for_day(user.id, local_day(now))

        approvers = self.resolve_approvers(user)
        if not approvers:
            raise ApiError(
                status_code=400,
                code="NO_APPROVER_AVAILABLE",
                message="No manager is available to approve this request. Contact an administrator.",
                details={"requires_manual_approval": True},
            )

        request = PendingOffPremisesCheckin(
            user_id=user.id,
            current_location_name=current_location_name,
            google_maps_name=google_maps_name,
            latitude=latitude,
            longitude=longitude,
            accuracy=accuracy,
            device_info=device_info,
            reason=(reason or "").strip() or None,
            status=OffPremisesStatus.PENDING,
            created_at=now,
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)

        display_name = google_maps_name or current_location_name
        for approver in approvers:
            self._queue_notification(
                recipient_id=approver.id,
                sender_id=user.id,
                title="Off-premises check-in request",
                message=f"{user.full_name} requests to check in from {display_name}.",
                notification_type="offpremises_checkin_request",
                data={"request_id": request.id, "latitude": latitude, "longitude": longitude},
            )
        self._queue_audit(
            "OFFPREMISES_REQUEST_SUBMITTED",
            request,
            actor_id=str(user.id),
            details={"approver_ids": [approver.id for approver in approvers]},
        )
        logger.info(
            "offpremises_request_submitted",
            extra={"user_id": user.id, "request_id": request.id, "approver_count": len(approvers)},
        )
        return request, approvers

    def decide(
        self,
        approver: UserProfile,
        *,
        request_id: int,
        approved: bool,
        comments: str | None = None,
        now_utc: datetime | None = None,
    ) -> tuple[PendingOffPremisesCheckin, AttendanceRecord | None]:
        if not can_review_offpremises(approver):
            raise ApiError(
                status_code=403,
                code="FORBIDDEN",
                message="Only managers can decide off-premises requests.",
            )

        now = normalize_ts(now_utc)
        request = _find_request_for_update(self.db, request_id)
        if request is None:
            raise ApiError(
                status_code=404,
                code="OFFPREMISES_REQUEST_NOT_FOUND",
                message="Off-premises request not found.",
            )
        if request.status != OffPremisesStatus.PENDING:
            raise ApiError(
                status_code=404,
                code="OFFPREMISES_REQUEST_ALREADY_DECIDED",
                message=f"Request has already been {request.status.value}.",
            )

        requester = request.user or _load_user(self.db, request.user_id)
        if requester is None:
            raise ApiError(
                status_code=404,
                code="OFFPREMISES_REQUEST_NOT_FOUND",
                message="Off-premises request not found.",
            )
        ensure_can_approve_offpremises(approver, requester)

        record: AttendanceRecord | None = None
        swept: list[StaleClosure] = []
        try:
            if approved:
                record, swept = self.attendance.build_offpremises_record(request, approver=approver)
            request.status = OffPremisesStatus.APPROVED if approved else OffPremisesStatus.DENIED
            request.approved_by_id = approver.id
            request.approved_at = now
            request.comments = (comments or "").strip() or None
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise _approval_conflict("ALREADY_CHECKED_IN", request_id) from None
        except ApiError as exc:
            self.db.rollback()
            if exc.code in ("ALREADY_CHECKED_IN", "ATTENDANCE_ALREADY_COMPLETED"):
                raise _approval_conflict(exc.code, request_id, exc.details) from None
            raise
        self.db.refresh(request)
        if record is not None:
            self.db.refresh(record)
        if swept:
            self.attendance.queue_auto_checkout_audits(requester.id, swept)

        if approved:
            message = f"Your off-premises check-in at {request.current_location_name} was approved."
        else:
            message = f"Your off-premises check-in at {request.current_location_name} was denied."
        if request.comments:
            message = f"{message} Comment: {request.comments}"
        self._queue_notification(
            recipient_id=requester.id,
            sender_id=approver.id,
            title="Off-premises request " + ("approved" if approved else "denied"),
            message=message,
            notification_type="offpremises_checkin_" + ("approved" if approved else "denied"),
            data={
                "request_id": request.id,
                "attendance_record_id": record.id if record is not None else None,
            },
        )
        self._queue_audit(
            "OFFPREMISES_REQUEST_APPROVED" if approved else "OFFPREMISES_REQUEST_DENIED",
            request,
            actor_id=str(approver.id),
            details={
                "requester_id": requester.id,
                "attendance_record_id": record.id if record is not None else None,
                "comments": request.comments,
            },
        )
        logger.info(
            "offpremises_request_decided",
            extra={
                "request_id": request.id,
                "approver_id": approver.id,
                "approved": approved,
                "record_id": record.id if record is not None else None,
            },
        )
        return request, record

    def list_pending(self, actor: UserProfile) -> list[PendingOffPremisesCheckin]:
        if not can_review_offpremises(actor):
            raise ApiError(
                status_code=403,
                code="FORBIDDEN",
                message="Only managers can review off-premises requests.",
            )
        return [
            request
            for request in _pending_requests(self.db)
            if request.user is not None and can_approve_offpremises(actor, request.user)
        ]

    def _queue_notification(self, **kwargs: Any) -> None:
        self.hooks.add(
            f"notify:{kwargs['notification_type']}:{kwargs['recipient_id']}",
            lambda: create_staff_notification(self.db, **kwargs),
        )

    def _queue_audit(
        self,
        action: str,
        request: PendingOffPremisesCheckin,
        *,
        actor_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        entity_id = str(request.id) if request.id is not None else None
        status = request.status.value
        context = self.context
        self.hooks.add(
            f"audit:{action}",
            lambda: log_audit(
                self.db,
                actor_type=AuditActorType.USER,
                actor_id=actor_id,
                action=action,
                success=True,
                entity_type="pending_offpremises_checkin",
                entity_id=entity_id,
                ip=context.ip,
                user_agent=context.user_agent,
                details={**(details or {}), "status": status},
                request_id=context.request_id,
            ),
        )
