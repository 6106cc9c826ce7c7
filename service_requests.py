import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

import notifications
from database import transaction
from errors import InvalidTransitionError, NotFoundError, ValidationError
from orm import PRIORITIES, ServiceRequest, ServiceRequestStatus, User

logger = logging.getLogger(__name__)


@dataclass
class ServiceRequestResult:
    request: ServiceRequest
    warnings: list[str] = field(default_factory=list)


def create_service_request(
    session: Session,
    caller: User,
    service_type: str,
    description: str,
    priority: Optional[str] = None,
) -> ServiceRequestResult:
    """Submit a request to hotel staff on behalf of the caller."""
    if not service_type or not description:
        raise ValidationError("Missing required fields")
    priority = priority or "medium"
    if priority not in PRIORITIES:
        raise ValidationError(f"Priority must be one of: {', '.join(PRIORITIES)}")

    with transaction(session, "create service request"):
        request = ServiceRequest(
            guest_id=caller.id,
            type=service_type,
            description=description,
            priority=priority,
            status=ServiceRequestStatus.PENDING,
        )
        session.add(request)
        session.flush()
        warning = notifications.emit(
            session,
            caller.id,
            "service_created",
            service_type=service_type,
            urgency="immediately" if priority == "high" else "shortly",
        )

    logger.info(f"Service request created: {request.id}, type={service_type}, priority={priority}")
    return ServiceRequestResult(request=request, warnings=[warning] if warning else [])


def cancel_service_request(session: Session, caller: User, request_id: str) -> ServiceRequestResult:
    """Cancel a pending request. Requests staff already picked up cannot be cancelled."""
    with transaction(session, "cancel service request"):
        request = session.get(ServiceRequest, request_id)
        if request is None or request.guest_id != caller.id:
            raise NotFoundError("Service request", request_id)
        if request.status != ServiceRequestStatus.PENDING:
            raise InvalidTransitionError.between(
                "service request", request.status, ServiceRequestStatus.CANCELLED
            )

        request.status = ServiceRequestStatus.CANCELLED
        session.flush()
        warning = notifications.emit(session, request.guest_id, "service_cancelled", service_type=request.type)

    logger.info(f"Service request {request.id} cancelled")
    return ServiceRequestResult(request=request, warnings=[warning] if warning else [])


def list_service_requests(
    session: Session, caller: User, page: int = 1, limit: int = 3
) -> tuple[list[ServiceRequest], int, int]:
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")

    total = session.scalar(
        select(func.count()).select_from(ServiceRequest).where(ServiceRequest.guest_id == caller.id)
    )
    stmt = (
        select(ServiceRequest)
        .where(ServiceRequest.guest_id == caller.id)
        .order_by(ServiceRequest.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(session.scalars(stmt)), total, math.ceil(total / limit)
