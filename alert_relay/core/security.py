import hmac
import os
import socket

BEARER_PREFIX = "Bearer "


def verify_cron_secret(authorization: str | None, secret: str) -> bool:
    """Check an Authorization header against the configured cron secret.

    The header must be exactly "Bearer <secret>". Comparison is constant-time.
    """
    if not authorization or not secret:
        return False
    expected = f"{BEARER_PREFIX}{secret}"
    return hmac.compare_digest(authorization.encode(), expected.encode())


def generate_worker_id(prefix: str = "worker") -> str:
    """Generate an identifier for a delivery worker process (prefix:host:pid)."""
    return f"{prefix}:{socket.gethostname()}:{os.getpid()}"
