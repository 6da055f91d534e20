from fastapi import APIRouter, Depends, HTTPException, Query, status

from laborline.core.config import Settings, get_settings
from laborline.schemas.labor_requests import (
    CraftMatchCount,
    LaborRequestAccepted,
    LaborRequestIn,
    LaborRequestSummaryOut,
    NotificationFailure,
)
from laborline.services.fanout import get_notification_trigger
from laborline.services.intake import RequestCreationError, submit_labor_request
from laborline.services.matching import get_agency_matcher
from laborline.services.repository import (
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)
from laborline.services.summary import TokenExpiredError, TokenFormatError, TokenNotFoundError, get_summary

router = APIRouter()

NOTIFICATION_WARNING = "Some agencies could not be notified. Please contact support."


@router.post("", response_model=LaborRequestAccepted, status_code=status.HTTP_201_CREATED)
async def create_labor_request(
    payload: LaborRequestIn,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    matcher=Depends(get_agency_matcher),
    trigger=Depends(get_notification_trigger),
) -> LaborRequestAccepted:
    try:
        result = await submit_labor_request(
            payload,
            repository=repository,
            matcher=matcher,
            trigger=trigger,
            token_ttl_hours=settings.confirmation_token_ttl_hours,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RequestCreationError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    if result.total_matches > 0:
        message = (
            f"Successfully matched {result.total_matches} agencies "
            f"across {len(result.craft_ids)} craft requirements"
        )
    else:
        message = "Labor request created, but no agencies matched the requirements"

    return LaborRequestAccepted(
        request_id=result.request_id,
        confirmation_token=result.confirmation_token,
        total_matches=result.total_matches,
        matches_by_craft=[
            CraftMatchCount(craft_id=craft_id, matches=matches) for craft_id, matches in result.matches_by_craft
        ],
        message=message,
        notification_warning=NOTIFICATION_WARNING if result.notification_errors else None,
        notification_errors=[
            NotificationFailure(craft_id=craft_id, error=error) for craft_id, error in result.notification_errors
        ],
    )


@router.get("/success", response_model=LaborRequestSummaryOut)
async def get_labor_request_summary(
    token: str | None = Query(default=None),
    repository=Depends(get_repository),
) -> LaborRequestSummaryOut:
    try:
        summary = await get_summary(repository, token)
    except TokenFormatError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TokenNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TokenExpiredError as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return LaborRequestSummaryOut.model_validate(summary)
