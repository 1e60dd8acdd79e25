"""Exception hierarchy for the compliance alerting core."""

from __future__ import annotations


class ComplianceError(Exception):
    """Base exception for all complywatch errors."""


class ValidationError(ComplianceError):
    """A violation payload is malformed and was rejected before alerting."""


class NotFoundError(ComplianceError):
    """An operation referenced an unknown alert, agent or task id."""


class ChannelDeliveryError(ComplianceError):
    """A single channel failed to deliver a notification (non-fatal)."""

    def __init__(self, channel: str, reason: str = "") -> None:
        super().__init__(f"{channel}: {reason}" if reason else channel)
        self.channel = channel
        self.reason = reason


class ConcurrencyConflictError(ComplianceError):
    """A compare-and-swap write lost against a concurrent writer."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        super().__init__(
            f"version conflict on {key}: expected {expected}, found {actual}",
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class SubsystemFailure(ComplianceError):
    """A subsystem could not be recovered by the health supervisor."""

    def __init__(self, subsystem: str, reason: str = "") -> None:
        super().__init__(f"{subsystem}: {reason}" if reason else subsystem)
        self.subsystem = subsystem
        self.reason = reason
