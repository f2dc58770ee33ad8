from __future__ import annotations


class OfflineAgentError(Exception):
    """Base class for errors raised by the offline agent."""


class NetworkError(OfflineAgentError):
    """No response could be obtained from upstream (connection error or timeout)."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Network request failed. url={url} reason={reason}")
        self.url = url
        self.reason = reason


class QueueStoreError(OfflineAgentError):
    """The durable upload queue could not be read or written."""
