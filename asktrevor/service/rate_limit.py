from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from asktrevor.logging import get_logger
from asktrevor.service.errors import RateLimitExceeded, ServerError

logger = get_logger(__name__)

# Counter signature: (subject, since) -> number of logged requests
Counter = Callable[[str, datetime], int]


@dataclass(frozen=True)
class RateLimitPolicy:
    """Sliding-window quota over a persisted request log.

    ``max_requests <= 0`` disables the policy. When the count query fails a
    fail-open policy lets the request through, a fail-closed one rejects it.
    """

    scope: str
    max_requests: int
    window_seconds: int
    noun: str = "requests"
    fail_open: bool = False
    message_template: str = "Rate limit exceeded. Maximum {limit} {noun} per {window}."

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.window_seconds > 0

    def window_label(self) -> str:
        if self.window_seconds == 3600:
            return "hour"
        if self.window_seconds == 60:
            return "minute"
        if self.window_seconds == 86400:
            return "day"
        return f"{self.window_seconds} seconds"

    def exceeded_message(self) -> str:
        return self.message_template.format(
            limit=self.max_requests, noun=self.noun, window=self.window_label()
        )


class RateLimiter:
    """Checks a subject's recent request count against a policy.

    Recording a request is left to the caller so each endpoint can decide
    whether to log before forwarding or only after success. The two steps are
    not atomic: concurrent requests may briefly exceed a quota.
    """

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or datetime.utcnow

    def window_start(self, policy: RateLimitPolicy) -> datetime:
        return self._clock() - timedelta(seconds=policy.window_seconds)

    def check(self, policy: RateLimitPolicy, subject: str, counter: Counter) -> int:
        """Raise RateLimitExceeded when ``subject`` is over quota.

        Returns the number of requests already counted in the window (0 when
        the policy is disabled or the count failed open).
        """
        if not policy.enabled:
            return 0
        try:
            count = counter(subject, self.window_start(policy))
        except Exception as exc:
            logger.error(
                "rate_limit_count_failed",
                scope=policy.scope,
                fail_open=policy.fail_open,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if policy.fail_open:
                return 0
            raise ServerError("Rate limit check failed") from exc

        if count >= policy.max_requests:
            logger.warning(
                "rate_limit_exceeded",
                scope=policy.scope,
                count=count,
                limit=policy.max_requests,
                window_seconds=policy.window_seconds,
            )
            raise RateLimitExceeded(
                policy.exceeded_message(),
                detail={"limit": policy.max_requests, "window_seconds": policy.window_seconds},
            )
        return count
