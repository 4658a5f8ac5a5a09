from alert_relay.schemas.content import ContentCandidate, ContentKey
from alert_relay.schemas.cron import CronErrorResponse, CronRunResponse

__all__ = [
    "ContentCandidate",
    "ContentKey",
    "CronRunResponse",
    "CronErrorResponse",
]
