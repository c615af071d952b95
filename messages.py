import asyncio
import enum
import hashlib
import ipaddress
import os
import struct
import time
from dataclasses import dataclass
from io import BytesIO
from typing import BinaryIO, ClassVar, Tuple, Union

from errors import DecodeError, TruncatedStreamError

PROTOCOL_VERSION = 70015  # >= 70016 makes peers send wtxidrelay/sendaddrv2 before verack
NODE_NONE = 0
USER_AGENT = "/bitlab-handshake:0.2/"
START_HEIGHT = 0

HEADER_LEN = 24
COMMAND_LEN = 12
MAX_PAYLOAD_LEN = 32 * 1024 * 1024  # 32 MiB


class Network(enum.Enum):
    """Magic bytes (kolejność jak na drucie) i domyślny port."""
    MAINNET = ("mainnet", bytes.fromhex("f9beb4d9"), 8333)
    TESTNET = ("testnet", bytes.fromhex("0b110907"), 18333)
    REGTEST = ("regtest", bytes.fromhex("fabfb5da"), 18444)
    SIGNET = ("signet", bytes.fromhex("0a03cf40"), 38333)

    def __init__(self, label: str, magic: bytes, default_port: int):
        self.label = label
        self.magic = magic
        self.default_port = default_port

    @classmethod
    def from_name(cls, name: str) -> "Network":
        for network in cls:
            if network.label == name.lower():
                return network
        raise ValueError(f"Unknown network: {name!r}")


#  Utilsy

def sha256d(b: bytes) -> bytes:
    """Double SHA256."""
    return hashlib.sha256(hashlib.sha256(b).digest()).digest()


def varint(n: int) -> bytes:
    """Bitcoin varint serializer."""
    if n < 0xfd:
        return struct.pack("B", n)
    elif n <= 0xffff:
        return b'\xfd' + struct.pack("<H", n)
    elif n <= 0xffffffff:
        return b'\xfe' + struct.pack("<I", n)
    else:
        return b'\xff' + struct.pack("<Q", n)


def read_exact(stream: BinaryIO, length: int) -> bytes:
    data = stream.read(length)
    if data is None or len(data) != length:
        got = 0 if not data else len(data)
        raise TruncatedStreamError(f"Stream ended: expected {length} bytes, got {got}")
    return data


def read_varint(stream: BinaryIO) -> int:
    prefix = read_exact(stream, 1)[0]
    if prefix < 0xfd:
        return prefix
    size = {0xfd: 2, 0xfe: 4, 0xff: 8}[prefix]
    return int.from_bytes(read_exact(stream, size), "little")


def ip_to_bytes(ip: str) -> bytes:
    """Bitcoin stores IPv4 as IPv6-mapped."""
    addr = ipaddress.ip_address(ip)
    if addr.version == 4:
        return b"\x00" * 10 + b"\xff\xff" + addr.packed
    return addr.packed


def ip_from_bytes(raw: bytes) -> str:
    addr = ipaddress.IPv6Address(raw)
    if addr.ipv4_mapped is not None:
        return str(addr.ipv4_mapped)
    return str(addr)


#  Adresy sieciowe (version message)

@dataclass(frozen=True)
class NetAddr:
    """
    NetAddr structure w Bitcoin:
      8 bytes services
      16 bytes IPv6
      2 bytes port (big endian!!)
    """
    services: int
    ip: str
    port: int

    def to_bytes(self) -> bytes:
        return (
            struct.pack("<Q", self.services) +
            ip_to_bytes(self.ip) +
            struct.pack(">H", self.port)
        )

    @classmethod
    def from_stream(cls, stream: BinaryIO) -> "NetAddr":
        services = struct.unpack("<Q", read_exact(stream, 8))[0]
        ip = ip_from_bytes(read_exact(stream, 16))
        port = struct.unpack(">H", read_exact(stream, 2))[0]
        return cls(services, ip, port)


#  Wiadomości handshake

@dataclass
class VersionMessage:
    version: int
    services: int
    timestamp: int
    addr_recv: NetAddr
    addr_from: NetAddr
    nonce: int
    user_agent: str
    start_height: int
    relay: bool = True

    command: ClassVar[str] = "version"

    def payload(self) -> bytes:
        user_agent = self.user_agent.encode("utf-8")
        return b"".join([
            struct.pack("<i", self.version),
            struct.pack("<Q", self.services),
            struct.pack("<q", self.timestamp),
            self.addr_recv.to_bytes(),
            self.addr_from.to_bytes(),
            struct.pack("<Q", self.nonce),
            varint(len(user_agent)) + user_agent,
            struct.pack("<i", self.start_height),
            struct.pack("B", 1 if self.relay else 0),
        ])

    @classmethod
    def from_payload(cls, payload: bytes) -> "VersionMessage":
        stream = BytesIO(payload)
        try:
            version = struct.unpack("<i", read_exact(stream, 4))[0]
            services = struct.unpack("<Q", read_exact(stream, 8))[0]
            timestamp = struct.unpack("<q", read_exact(stream, 8))[0]
            addr_recv = NetAddr.from_stream(stream)
            addr_from = NetAddr.from_stream(stream)
            nonce = struct.unpack("<Q", read_exact(stream, 8))[0]
            user_agent = read_exact(stream, read_varint(stream)).decode("utf-8", errors="replace")
            start_height = struct.unpack("<i", read_exact(stream, 4))[0]
        except TruncatedStreamError as e:
            raise DecodeError(f"Malformed version payload: {e.message}") from e

        # relay (BIP 37) jest opcjonalny
        relay_byte = stream.read(1)
        relay = relay_byte != b"\x00"

        return cls(version, services, timestamp, addr_recv, addr_from, nonce, user_agent, start_height, relay)


@dataclass
class VerackMessage:
    """Very small, empty payload."""
    command: ClassVar[str] = "verack"

    def payload(self) -> bytes:
        return b""

    @classmethod
    def from_payload(cls, payload: bytes) -> "VerackMessage":
        if payload:
            raise DecodeError(f"verack carries {len(payload)} unexpected payload bytes")
        return cls()


Message = Union[VersionMessage, VerackMessage]

MESSAGE_TYPES = {
    VersionMessage.command: VersionMessage,
    VerackMessage.command: VerackMessage,
}


def build_version_message(
    local: Tuple[str, int],
    remote: Tuple[str, int],
    services: int = NODE_NONE,
    user_agent: str = USER_AGENT,
    start_height: int = START_HEIGHT,
    relay: bool = True,
) -> VersionMessage:
    """
    Version message zgodnie z Bitcoin protocol.
    local/remote to pary (ip, port); nonce jest losowany przy każdym wywołaniu.
    """
    local_ip, local_port = local[0], local[1]
    remote_ip, remote_port = remote[0], remote[1]
    nonce = struct.unpack("<Q", os.urandom(8))[0]

    return VersionMessage(
        version=PROTOCOL_VERSION,
        services=services,
        timestamp=int(time.time()),
        addr_recv=NetAddr(services, remote_ip, remote_port),
        addr_from=NetAddr(services, local_ip, local_port),
        nonce=nonce,
        user_agent=user_agent,
        start_height=start_height,
        relay=relay,
    )


def build_verack_message() -> VerackMessage:
    return VerackMessage()


#  Nagłówek Bitcoin

def bitcoin_message(command: str, payload: bytes, network: Network = Network.MAINNET) -> bytes:
    """
    Buduje pełną wiadomość Bitcoin P2P:
    magic(4) + command(12, NUL padded) + length(4, LE) + checksum(4) + payload
    """
    command_bytes = command.encode("ascii")
    if len(command_bytes) > COMMAND_LEN:
        raise ValueError(f"Command too long: {command!r}")

    command_bytes = command_bytes + b"\x00" * (COMMAND_LEN - len(command_bytes))
    payload_len = struct.pack("<I", len(payload))
    checksum = sha256d(payload)[:4]

    return network.magic + command_bytes + payload_len + checksum + payload


def serialize(message: Message, network: Network = Network.MAINNET) -> bytes:
    return bitcoin_message(message.command, message.payload(), network)


#  Parsowanie

def _parse_header(header: bytes, network: Network) -> Tuple[str, int, bytes]:
    magic = header[0:4]
    if magic != network.magic:
        raise DecodeError(f"Wrong magic: {magic.hex()}")

    command_raw = header[4:16]
    name, _, padding = command_raw.partition(b"\x00")
    if padding.strip(b"\x00"):
        raise DecodeError(f"Command not NUL padded: {command_raw!r}")
    try:
        command = name.decode("ascii")
    except UnicodeDecodeError:
        raise DecodeError(f"Command is not ASCII: {command_raw!r}")

    payload_len = int.from_bytes(header[16:20], "little")
    if payload_len > MAX_PAYLOAD_LEN:
        raise DecodeError(f"Payload too large: {payload_len} bytes")

    if command not in MESSAGE_TYPES:
        raise DecodeError(f"Unknown command: {command!r}")

    return command, payload_len, header[20:24]


def _decode_payload(command: str, payload: bytes, checksum: bytes) -> Message:
    if sha256d(payload)[:4] != checksum:
        raise DecodeError("Checksum mismatch")
    return MESSAGE_TYPES[command].from_payload(payload)


def parse_next(stream: Union[bytes, BinaryIO], network: Network = Network.MAINNET) -> Tuple[str, Message]:
    """Read exactly one envelope from a blocking byte stream."""
    if isinstance(stream, (bytes, bytearray)):
        stream = BytesIO(stream)

    command, payload_len, checksum = _parse_header(read_exact(stream, HEADER_LEN), network)
    payload = read_exact(stream, payload_len)
    return command, _decode_payload(command, payload, checksum)


async def read_message(reader: asyncio.StreamReader, network: Network = Network.MAINNET) -> Tuple[str, Message]:
    """Async counterpart of parse_next over a StreamReader."""
    try:
        header = await reader.readexactly(HEADER_LEN)
        command, payload_len, checksum = _parse_header(header, network)
        payload = await reader.readexactly(payload_len)
    except asyncio.IncompleteReadError as e:
        raise TruncatedStreamError(
            f"Stream ended: expected {e.expected} bytes, got {len(e.partial)}") from e

    return command, _decode_payload(command, payload, checksum)
