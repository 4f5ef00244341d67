from typing import TYPE_CHECKING

from fastapi import FastAPI, Query

from .models.api import HealthResponse, StatsResponse
from .utils.time_utils import get_current_timestamp

if TYPE_CHECKING:
    from .main import LoadGenApplication


def create_stats_app(application: "LoadGenApplication") -> FastAPI:
    """
    Read-only HTTP view of a running load generator.

    Nothing here can publish, subscribe or change the workload.
    """
    app = FastAPI(
        title="Pub/Sub Load Generator",
        description="Throughput statistics for a running load generator",
        version="1.0.0",
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="stopping" if application.shutting_down else "healthy",
            uptime_seconds=get_current_timestamp() - application.start_time,
            connected=application.broker.connected,
            publisher_count=len(application.publishers),
            subscriber_count=len(application.subscribers),
        )

    @app.get("/stats", response_model=StatsResponse)
    async def get_stats(last_n: int = Query(default=10, ge=0, le=1000)) -> StatsResponse:
        """Cumulative totals plus the most recent periodic reports."""
        return application.stats.snapshot(last_n)

    return app
