from fastapi import APIRouter, Depends, HTTPException, status

from laborline.core.security import get_delivery_principal, get_human_principal
from laborline.schemas.notifications import DeliveryReport, NotificationOut, RespondRequest
from laborline.services import lifecycle
from laborline.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryWriteError,
    get_repository,
)

router = APIRouter()


def _require_write(principal) -> None:
    try:
        principal.require_scopes({"notifications:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


async def _run_transition(operation) -> NotificationOut:
    try:
        row = await operation
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except RepositoryWriteError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return NotificationOut(**row)


@router.post("/{notification_id}/view", response_model=NotificationOut)
async def view_notification(
    notification_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> NotificationOut:
    _require_write(principal)
    return await _run_transition(lifecycle.mark_viewed(repository, notification_id, principal=principal))


@router.post("/{notification_id}/respond", response_model=NotificationOut)
async def respond_to_notification(
    notification_id: str,
    payload: RespondRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> NotificationOut:
    _require_write(principal)
    return await _run_transition(
        lifecycle.respond(
            repository,
            notification_id,
            principal=principal,
            interested=payload.interested,
            message=payload.message,
        )
    )


@router.post("/{notification_id}/archive", response_model=NotificationOut)
async def archive_notification(
    notification_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> NotificationOut:
    _require_write(principal)
    return await _run_transition(lifecycle.archive(repository, notification_id, principal=principal))


@router.post("/{notification_id}/delivery", response_model=NotificationOut)
async def report_delivery(
    notification_id: str,
    payload: DeliveryReport,
    principal=Depends(get_delivery_principal),
    repository=Depends(get_repository),
) -> NotificationOut:
    try:
        principal.require_scopes({"notifications:deliver"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return await _run_transition(
        lifecycle.record_delivery(
            repository,
            notification_id,
            delivered=payload.status == "sent",
            delivery_error=payload.delivery_error,
        )
    )
