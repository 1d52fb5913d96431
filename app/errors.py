from __future__ import annotations


class MinderError(Exception):
    """Base error for the minder backend."""


class PersistenceError(MinderError):
    """Job store read/write failure."""


class MessengerError(MinderError):
    """A single message send attempt failed."""


class DeliveryError(MinderError):
    """Both direct and fallback delivery failed for a reminder."""

    def __init__(self, job_id: int, reason: str) -> None:
        super().__init__(f"reminder {job_id} undelivered: {reason}")
        self.job_id = job_id
        self.reason = reason


class DispatchError(MinderError):
    """One webhook endpoint rejected or failed a POST."""

    def __init__(self, endpoint_id: str, reason: str) -> None:
        super().__init__(f"endpoint {endpoint_id} failed: {reason}")
        self.endpoint_id = endpoint_id
        self.reason = reason
