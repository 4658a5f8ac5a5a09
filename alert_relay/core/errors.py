"""Exceptions raised at the service boundary."""


class ConfigurationError(Exception):
    """Required configuration (secret, credentials) is missing."""


class CronAuthError(Exception):
    """Cron trigger request carried a missing or wrong bearer secret."""


class TransportError(Exception):
    """The mail transport rejected or failed to send a message."""
