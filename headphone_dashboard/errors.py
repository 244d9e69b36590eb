"""Exception hierarchy shared by brokers, generator and dashboard."""

from __future__ import annotations


class HeadphoneError(Exception):
    """Base exception for all headphone_dashboard errors."""


class BrokerError(HeadphoneError):
    """Base for errors raised through the broker contract."""

    def __init__(self, message: str, *, backend: str = "") -> None:
        self.backend = backend
        super().__init__(message)


class NotConnected(BrokerError):
    """An operation was attempted before a successful `connect()`."""


class ConnectionFailure(BrokerError):
    """The backend is unreachable or rejected the connection."""


class BackendOperationFailure(BrokerError):
    """publish/subscribe/unsubscribe rejected by the backend after connecting."""


class MalformedPayload(HeadphoneError, ValueError):
    """A received message could not be decoded into a HeadphoneEvent."""

    def __init__(self, message: str, *, payload: str | bytes = "") -> None:
        self.payload = payload
        super().__init__(message)
