"""Content File Transfer Protocol (CFTP)

One stream connection carries two kinds of traffic:
- length-prefixed JSON control frames (file requests and file responses)
- the raw payload bytes that follow each response

SocketTransporter keeps the two from interleaving on the wire.
"""

from .exceptions import (
    AlreadyClosedError,
    AlreadyConnectedError,
    ConnectionError,
    DecodeError,
    FrameTooLargeError,
    NotConnectedError,
    TransferError,
    TransportError,
)
from .message import FileRequest, FileResponse
from .transport import ContentFileTransporter, SocketTransporter

__all__ = [
    "AlreadyClosedError",
    "AlreadyConnectedError",
    "ConnectionError",
    "ContentFileTransporter",
    "DecodeError",
    "FileRequest",
    "FileResponse",
    "FrameTooLargeError",
    "NotConnectedError",
    "SocketTransporter",
    "TransferError",
    "TransportError",
]
