from typing import List

from pydantic import BaseModel


class StatsReport(BaseModel):
    timestamp: float
    total_sent: int
    total_received: int
    rate_sent: float
    rate_received: float
    publish_errors: int = 0


class StatsResponse(BaseModel):
    total_sent: int
    total_received: int
    bytes_sent: int
    bytes_received: int
    publish_errors: int
    reports: List[StatsReport]


class HealthResponse(BaseModel):
    status: str = "healthy"
    uptime_seconds: float
    connected: bool
    publisher_count: int
    subscriber_count: int
