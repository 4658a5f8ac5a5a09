from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from alert_relay.config import AppConfig, Settings, get_config, get_settings
from alert_relay.core.database import get_db
from alert_relay.core.errors import ConfigurationError, CronAuthError
from alert_relay.core.logging import get_logger
from alert_relay.core.security import generate_worker_id, verify_cron_secret
from alert_relay.services.email_service import MailTransport, get_transport

logger = get_logger(__name__)

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]


async def verify_cron(
    settings: AppSettings,
    authorization: str | None = Header(default=None),
) -> None:
    """Require `Authorization: Bearer <CRON_SECRET>` on cron endpoints."""
    if not settings.cron_secret:
        logger.error("cron_secret_not_configured")
        raise ConfigurationError("CRON_SECRET is not set")

    if not verify_cron_secret(authorization, settings.cron_secret):
        logger.bind(has_header=authorization is not None).warning("cron_auth_failed")
        raise CronAuthError("Invalid or missing cron secret")


def get_mail_transport(settings: AppSettings) -> MailTransport:
    """Mail transport for the delivery worker (overridden in tests)."""
    return get_transport(settings)


def get_worker_id(settings: AppSettings) -> str:
    return settings.worker_id or generate_worker_id()


Transport = Annotated[MailTransport, Depends(get_mail_transport)]
WorkerId = Annotated[str, Depends(get_worker_id)]
