import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from laborline.core.clients import get_client_ip, hash_client_key
from laborline.core.config import Settings, get_settings
from laborline.core.ratelimit import get_rate_limiter
from laborline.core.security import is_monitoring_request_authorized
from laborline.schemas.monitoring import MetricsOut, PathMetricsOut
from laborline.services.metrics import REQUEST_METRICS

logger = logging.getLogger(__name__)

router = APIRouter()

NO_CACHE = "no-cache, no-store, must-revalidate"


@router.get("/metrics", response_model=MetricsOut)
async def get_metrics(
    request: Request,
    settings: Settings = Depends(get_settings),
    limiter=Depends(get_rate_limiter),
    monitoring_key: str | None = Header(default=None, alias="x-monitoring-key"),
):
    client_key = hash_client_key(get_client_ip(request), salt=settings.rate_limit_key_salt, now=limiter.now())

    state = await limiter.check(client_key)
    if state.blocked:
        logger.warning("monitoring access rate limited client=%s", client_key[:12])
        return JSONResponse(
            status_code=429,
            content={"detail": "too many failed attempts, try again later"},
            headers=state.headers(limiter.now(), retry_after=True),
        )

    if not is_monitoring_request_authorized(settings, monitoring_key):
        state = await limiter.record_failure(client_key)
        logger.warning(
            "monitoring access denied client=%s attempts=%s/%s",
            client_key[:12],
            state.count,
            state.limit,
        )
        headers = {"WWW-Authenticate": "ApiKey"}
        headers.update(state.headers(limiter.now()))
        return JSONResponse(status_code=401, content={"detail": "unauthorized"}, headers=headers)

    metrics = MetricsOut(
        timestamp=datetime.now(timezone.utc),
        environment=settings.environment,
        uptime_seconds=REQUEST_METRICS.uptime_seconds(),
        paths=[PathMetricsOut(**item) for item in REQUEST_METRICS.snapshot()],
    )
    return JSONResponse(
        content=metrics.model_dump(mode="json"),
        headers={"Cache-Control": NO_CACHE},
    )
