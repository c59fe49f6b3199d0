"""
Exceptions raised by cftp.

Every error the transport surfaces derives from TransportError so callers can
catch the whole family, or branch on the category they care about.
"""

from __future__ import annotations

import builtins


class TransportError(Exception):
    """Base exception for all cftp errors."""
    pass


class AlreadyClosedError(TransportError):
    """Operation attempted on a transporter that has been closed."""

    def __init__(self, message: str = "transporter is already closed"):
        super().__init__(message)


class NotConnectedError(TransportError):
    """Operation attempted before a successful connect."""

    def __init__(self, message: str = "transporter is not connected; call connect() first"):
        super().__init__(message)


class AlreadyConnectedError(TransportError):
    """connect() called on a transporter that already has a connection."""

    def __init__(self, message: str = "transporter is already connected"):
        super().__init__(message)


class ConnectionError(TransportError, builtins.ConnectionError):
    """Underlying stream failed, including the peer closing mid-read."""
    pass


class DecodeError(TransportError, ValueError):
    """A received frame is not a well-formed control message."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class FrameTooLargeError(TransportError, ValueError):
    """Encoded control message does not fit in one frame."""

    def __init__(self, size: int, max_size: int):
        super().__init__(f"encoded message size {size} exceeds maximum {max_size}")
        self.size = size
        self.max_size = max_size


class TransferError(TransportError):
    """A fetched body did not match its response header."""
    pass
