"""
Per-execution call quota.
"""
import logging

from codegate.exceptions import QuotaExceededError
from codegate.observability import record_quota_rejected

logger = logging.getLogger(__name__)


class CallQuota:
    """Counts remote calls for one execution.

    A new CallQuota is created for every execution and handed to the
    capability surface by reference; nothing else holds a counter.
    acquire() must be called before the network step and never awaits, so
    concurrently scheduled calls cannot interleave between the check and
    the increment.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Quota limit must be at least 1, got {limit}")
        self.limit = limit
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    def acquire(self) -> int:
        """Claim one call and return its 1-based index.

        Raises:
            QuotaExceededError: If the claim would exceed the limit. Rejected
                claims are not counted as used.
        """
        attempted = self.used + 1
        if attempted > self.limit:
            logger.warning(f"Call quota exhausted ({self.limit} per execution)")
            record_quota_rejected()
            raise QuotaExceededError(self.limit, attempted)
        self.used = attempted
        return attempted
