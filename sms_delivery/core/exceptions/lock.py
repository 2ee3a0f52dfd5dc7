"""
Distributed Job Lock Exceptions
"""

from sms_delivery.core.exceptions.base import DeliveryBaseError


class JobLockError(DeliveryBaseError):
    """Base exception for job lock errors."""
    pass


class LockNotAcquiredError(JobLockError):
    """
    Raised by `DistributedJobLock.require()` when the lock is held elsewhere
    or its state could not be confirmed.
    """
    pass
