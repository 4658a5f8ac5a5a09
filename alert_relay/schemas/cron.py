from pydantic import BaseModel


class CronRunResponse(BaseModel):
    """Response body of a cron trigger endpoint."""

    success: bool
    message: str
    processed: int | None = None
    queued: int | None = None
    sent: int | None = None
    failed: int | None = None
    requeued: int | None = None
    deleted: int | None = None
    duration_ms: int
    timestamp: str


class CronErrorResponse(BaseModel):
    """Response body when a cron trigger fails."""

    error: str
    message: str
    timestamp: str
