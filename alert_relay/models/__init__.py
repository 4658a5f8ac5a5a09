from alert_relay.models.base import Base
from alert_relay.models.content import ContentItem, ContentLike
from alert_relay.models.history import AlertHistory
from alert_relay.models.job_run import JobRun
from alert_relay.models.ledger import AlertContentSent
from alert_relay.models.queue import EmailQueueItem, QueueStatus
from alert_relay.models.subscription import AlertSubscription, Cadence

__all__ = [
    "Base",
    "AlertSubscription",
    "Cadence",
    "ContentItem",
    "ContentLike",
    "AlertContentSent",
    "EmailQueueItem",
    "QueueStatus",
    "AlertHistory",
    "JobRun",
]
