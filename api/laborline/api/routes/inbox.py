from fastapi import APIRouter, Depends, HTTPException, Query, status

from laborline.core.masking import mask_email, mask_phone
from laborline.core.security import get_human_principal
from laborline.schemas.notifications import InboxCraftOut, InboxLaborRequestOut, InboxNotificationOut, InboxOut
from laborline.services import lifecycle
from laborline.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryWriteError,
    get_repository,
)
from laborline.services.search import InvalidFilterError, build_inbox_filter

router = APIRouter()


@router.get("/{agency_id}/labor-requests", response_model=InboxOut)
async def list_agency_labor_requests(
    agency_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, max_length=200),
) -> InboxOut:
    try:
        principal.require_scopes({"notifications:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        inbox_filter = build_inbox_filter(search=search, status=status_filter)
    except InvalidFilterError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    try:
        await lifecycle.observe_inbox(repository, agency_id, principal=principal)
        rows = await repository.list_agency_inbox(agency_id, principal=principal, inbox_filter=inbox_filter)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryWriteError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    notifications = [_to_inbox_item(row) for row in rows]
    return InboxOut(notifications=notifications, total=len(notifications))


def _to_inbox_item(row: dict) -> InboxNotificationOut:
    request = row["labor_request"]
    craft = {key: value for key, value in row["craft"].items() if value is not None}
    return InboxNotificationOut(
        id=row["id"],
        status=row["status"],
        sent_at=row["sent_at"],
        viewed_at=row["viewed_at"],
        responded_at=row["responded_at"],
        created_at=row["created_at"],
        labor_request=InboxLaborRequestOut(
            id=request["id"],
            project_name=request["project_name"],
            company_name=request["company_name"],
            contact_email=mask_email(request["contact_email"] or ""),
            contact_phone=mask_phone(request["contact_phone"]),
            additional_details=request["additional_details"],
        ),
        craft=InboxCraftOut(**craft),
    )
