"""Rate limiting for the messaging API and for individual senders."""

import hashlib
import logging
import os

from limits import RateLimitItemPerMinute
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

from erp_messaging.core import metrics
from erp_messaging.core.config import settings
from erp_messaging.core.errors import RateLimitedError

logger = logging.getLogger(__name__)

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    default_limits=DEFAULT_LIMITS,
    enabled=not IS_TESTING,
)


class SenderRateLimiter:
    """
    Per-sender throttle applied before a message is written.

    - more than `per_minute` messages from one (company, empid) -> RATE_LIMITED
    - the same body twice within a minute -> DUPLICATE_MESSAGE

    check() only tests the windows; record() counts a message once it is
    committed, so a post that fails before or during the insert leaves no trace.
    """

    def __init__(self, per_minute: int | None = None, storage_uri: str = "memory://"):
        self.per_minute = per_minute if per_minute is not None else settings.MESSAGE_RATE_LIMIT_PER_MINUTE
        self._strategy = MovingWindowRateLimiter(storage_from_string(storage_uri))
        self._volume = RateLimitItemPerMinute(max(self.per_minute, 1))
        self._duplicate = RateLimitItemPerMinute(1)

    @staticmethod
    def _keys(company_id: int, empid: str, body: str) -> tuple[tuple[str, str], str]:
        return (str(company_id), str(empid)), hashlib.sha256(body.encode("utf-8")).hexdigest()

    def check(self, company_id: int, empid: str, body: str) -> None:
        if self.per_minute <= 0:
            return
        sender, digest = self._keys(company_id, empid, body)

        if not self._strategy.test(self._duplicate, "dup", *sender, digest):
            metrics.RATE_LIMIT_HITS.labels(reason="duplicate").inc()
            logger.warning("Duplicate message rejected company_id=%s empid=%s", *sender)
            raise RateLimitedError("Duplicate message detected", code="DUPLICATE_MESSAGE")
        if not self._strategy.test(self._volume, "volume", *sender):
            metrics.RATE_LIMIT_HITS.labels(reason="volume").inc()
            logger.warning("Sender rate limited company_id=%s empid=%s", *sender)
            raise RateLimitedError("Too many messages in a short period")

    def record(self, company_id: int, empid: str, body: str) -> None:
        if self.per_minute <= 0:
            return
        sender, digest = self._keys(company_id, empid, body)
        self._strategy.hit(self._volume, "volume", *sender)
        self._strategy.hit(self._duplicate, "dup", *sender, digest)
