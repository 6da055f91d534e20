from datetime import datetime

from pydantic import BaseModel, Field


class PathMetricsOut(BaseModel):
    path: str
    total_requests: int
    error_requests: int
    error_rate: float
    avg_duration_ms: float


class MetricsOut(BaseModel):
    timestamp: datetime
    environment: str
    uptime_seconds: float
    paths: list[PathMetricsOut] = Field(default_factory=list)
