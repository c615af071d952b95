"""
Bitcoin handshake with a single peer.

Order is fixed and half-duplex:
    send version -> recv version -> send verack -> recv verack

The whole exchange runs in its own task bounded by `timeout`. When the
budget runs out the task is cancelled and the socket is aborted before
establish() returns TIMED_OUT.
"""
import asyncio
import enum
from dataclasses import dataclass
from typing import List, Optional, Tuple

from errors import BitLabError, ConnectError, ErrorKind, IoError, ProtocolViolation, TimeoutExceeded
from log import get_logger
from messages import (Network, VerackMessage, VersionMessage, build_verack_message,
                      build_version_message, read_message, serialize)

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 2.0  # seconds


class HandshakeStatus(enum.Enum):
    COMPLETED = "Completed"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"


class HandshakeState(enum.Enum):
    IDLE = "Idle"
    CONNECTING = "Connecting"
    VERSION_SENT = "VersionSent"
    AWAITING_REMOTE_VERSION = "AwaitingRemoteVersion"
    ACK_SENT = "AckSent"
    AWAITING_REMOTE_ACK = "AwaitingRemoteAck"
    COMPLETED = "Completed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


@dataclass(frozen=True)
class HandshakeOutcome:
    status: HandshakeStatus
    error: Optional[ErrorKind] = None
    reason: str = ""
    peer: Optional[Tuple[str, int]] = None

    @property
    def ok(self) -> bool:
        return self.status is HandshakeStatus.COMPLETED

    @classmethod
    def completed(cls, peer=None) -> "HandshakeOutcome":
        return cls(HandshakeStatus.COMPLETED, peer=peer)

    @classmethod
    def timed_out(cls, error: TimeoutExceeded) -> "HandshakeOutcome":
        return cls(HandshakeStatus.TIMED_OUT, error.kind, error.message, error.peer)

    @classmethod
    def failed(cls, error: BitLabError) -> "HandshakeOutcome":
        return cls(HandshakeStatus.FAILED, error.kind, error.message, error.peer)

    def __str__(self):
        if self.status is HandshakeStatus.FAILED:
            return f"Failed({self.error.value}: {self.reason})"
        return self.status.value


class HandshakeDriver:
    def __init__(self, network: Network = Network.MAINNET, timeout: float = DEFAULT_TIMEOUT):
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.network = network
        self.timeout = timeout
        self.state = HandshakeState.IDLE
        self.transitions: List[HandshakeState] = [HandshakeState.IDLE]
        self.remote_version: Optional[VersionMessage] = None

    def _enter(self, state: HandshakeState):
        logger.debug("%s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    async def establish(self, peer: Tuple[str, int]) -> HandshakeOutcome:
        """Run one bounded handshake attempt; never raises for protocol/transport errors."""
        self.state = HandshakeState.IDLE
        self.transitions = [HandshakeState.IDLE]
        self.remote_version = None

        task = asyncio.create_task(self._run(peer))
        try:
            # wait_for anuluje task przy timeout i czeka aż się zakończy
            await asyncio.wait_for(task, self.timeout)
        except asyncio.TimeoutError:
            error = TimeoutExceeded(f"no handshake within {self.timeout:g}s", peer=peer)
            logger.debug("%s", error)
            self._enter(HandshakeState.TIMED_OUT)
            return HandshakeOutcome.timed_out(error)
        except BitLabError as e:
            e.with_peer(peer)
            logger.debug("%s", e)
            self._enter(HandshakeState.FAILED)
            return HandshakeOutcome.failed(e)

        self._enter(HandshakeState.COMPLETED)
        return HandshakeOutcome.completed(peer)

    async def _run(self, peer: Tuple[str, int]):
        host, port = peer[0], peer[1]

        self._enter(HandshakeState.CONNECTING)
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise ConnectError(f"Could not connect: {e}") from e

        completed = False
        try:
            local = writer.get_extra_info("sockname")
            remote = writer.get_extra_info("peername")

            # 1. version
            await self._send(writer, build_version_message(local[:2], remote[:2]))
            self._enter(HandshakeState.VERSION_SENT)

            # 2. version od peera
            self._enter(HandshakeState.AWAITING_REMOTE_VERSION)
            command, message = await self._receive(reader)
            if not isinstance(message, VersionMessage):
                raise ProtocolViolation(f"Expected version, got {command}")
            self.remote_version = message
            logger.debug("Remote version %d, user agent %r", message.version, message.user_agent)

            # 3. verack
            await self._send(writer, build_verack_message())
            self._enter(HandshakeState.ACK_SENT)

            # 4. verack od peera
            self._enter(HandshakeState.AWAITING_REMOTE_ACK)
            command, message = await self._receive(reader)
            if not isinstance(message, VerackMessage):
                raise ProtocolViolation(f"Expected verack, got {command}")
            completed = True
        finally:
            await self._release(writer, graceful=completed)

    async def _send(self, writer: asyncio.StreamWriter, message):
        try:
            writer.write(serialize(message, self.network))
            await writer.drain()
        except OSError as e:
            raise IoError(f"Failed to send {message.command}: {e}") from e

    async def _receive(self, reader: asyncio.StreamReader):
        try:
            return await read_message(reader, self.network)
        except OSError as e:
            raise IoError(f"Failed to read message: {e}") from e

    @staticmethod
    async def _release(writer: asyncio.StreamWriter, graceful: bool):
        # abort() nie czeka na opróżnienie bufora zapisu
        if graceful:
            writer.close()
        else:
            writer.transport.abort()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing connection: %s", e)


async def establish_handshake(peer: Tuple[str, int], timeout: float = DEFAULT_TIMEOUT,
                              network: Network = Network.MAINNET) -> HandshakeOutcome:
    return await HandshakeDriver(network, timeout).establish(peer)


if __name__ == "__main__":
    from peer_discovery import resolve_seed

    async def _demo():
        for peer in resolve_seed(0):
            outcome = await establish_handshake(peer)
            print(peer, "→", outcome)
            if outcome.ok:
                break

    asyncio.run(_demo())
