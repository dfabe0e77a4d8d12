"""Shared enums for the URL shortener application.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "DeliveryState", "MessageType", "RequestStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    OK = "ok"


class DeliveryState(StrEnum):
    """Lifecycle of a pushed short URL awaiting client acknowledgment.

    ``UNSENT -> PENDING -> ACKNOWLEDGED | EXHAUSTED``; both end states are terminal.
    """

    UNSENT = "unsent"
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryState.ACKNOWLEDGED, DeliveryState.EXHAUSTED)


class MessageType(StrEnum):
    """WebSocket message ``type`` tags."""

    CONNECTION = "connection"
    ACKNOWLEDGMENT = "acknowledgment"

    @classmethod
    def from_str(cls, value: str) -> "MessageType | None":
        """Safely parse from string, returning None for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return None


class RequestStatus(StrEnum):
    """Outcome labels for request metrics."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    ERROR = "error"
