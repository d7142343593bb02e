"""Shared-secret checks for admin and scheduler callers.

Both secrets are static configuration values. The admin secret is optional:
when it is not configured admin operations are open, which is how local
installs run. The cron secret is mandatory: without it the reaper endpoint
refuses every caller.
"""

import hmac
import logging
from typing import Optional

from .errors import Unauthorized

logger = logging.getLogger(__name__)


def _same(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def check_admin(provided: Optional[str], expected: Optional[str]):
    """Check an admin key against the configured admin password.

    Raises:
        Unauthorized: If a password is configured and the key does not match
    """
    if not expected:
        return
    if not provided or not _same(provided, expected):
        logger.warning("Rejected admin request with a bad key")
        raise Unauthorized("unauthorized")


def check_cron(authorization: Optional[str], secret: Optional[str]):
    """Check a scheduler's Authorization header.

    Accepts "Bearer <secret>" or the bare secret.

    Raises:
        Unauthorized: If no secret is configured or the header does not match
    """
    if not secret:
        logger.error("Cron secret is not configured; refusing scheduler request")
        raise Unauthorized("unauthorized")

    header = (authorization or "").strip()
    if header.startswith("Bearer "):
        header = header[len("Bearer "):]
    if not header or not _same(header, secret):
        logger.warning("Rejected scheduler request with a bad secret")
        raise Unauthorized("unauthorized")
