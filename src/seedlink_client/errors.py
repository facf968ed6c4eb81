"""
Exception types for the streaming client.

Only configuration errors are fatal to the process. Transport errors end
the stream; record parse errors are reported per packet and skipped.
"""

from typing import Optional


class SeedLinkClientError(Exception):
    """Base class for all client errors"""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self):
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class ConfigurationError(SeedLinkClientError):
    """Invalid or incomplete configuration, reported before any session activity"""


class TransportError(SeedLinkClientError):
    """Unrecoverable failure of the packet transport"""


class RecordParseError(SeedLinkClientError):
    """A data packet payload could not be decoded"""
