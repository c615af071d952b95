import enum


class ErrorKind(enum.Enum):
    """Rodzaje błędów jednej próby handshake."""
    DNS_LOOKUP = "DnsLookupError"
    CONNECT = "ConnectError"
    IO = "IoError"
    DECODE = "DecodeError"
    PROTOCOL_VIOLATION = "ProtocolViolation"
    TIMEOUT = "TimeoutExceeded"


class BitLabError(Exception):
    """
    Base error with the kind and (optionally) the peer it concerns.
    str() gives: [KIND] message peer=1.2.3.4:8333
    """
    kind = ErrorKind.IO

    def __init__(self, message: str = "", peer=None):
        super().__init__(message)
        self.message = message
        self.peer = peer

    def with_peer(self, peer):
        self.peer = peer
        return self

    def __str__(self):
        text = f"[{self.kind.value}] {self.message}"
        if self.peer is not None:
            text += f" peer={self.peer}"
        return text


class DnsLookupError(BitLabError):
    kind = ErrorKind.DNS_LOOKUP


class IndexOutOfRange(DnsLookupError, IndexError):
    """Seed or peer index outside the table."""


class ConnectError(BitLabError):
    kind = ErrorKind.CONNECT


class IoError(BitLabError):
    """Read/write failure on an established connection."""
    kind = ErrorKind.IO


class DecodeError(BitLabError):
    kind = ErrorKind.DECODE


class TruncatedStreamError(DecodeError):
    """Stream ended in the middle of an envelope."""


class ProtocolViolation(BitLabError):
    kind = ErrorKind.PROTOCOL_VIOLATION


class TimeoutExceeded(BitLabError):
    kind = ErrorKind.TIMEOUT
