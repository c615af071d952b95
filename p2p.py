from typing import Dict, Iterable, List, Optional, Tuple

from errors import IndexOutOfRange
from handshake import DEFAULT_TIMEOUT, HandshakeOutcome, HandshakeStatus, establish_handshake
from log import get_logger
from messages import Network
from peer_discovery import PeerAddress, async_resolve_all, async_resolve_seed, sort_peers

logger = get_logger(__name__)


class HandshakeLedger:
    """
    Ostatni wynik handshake dla każdego adresu.
    Kolejna próba z tym samym adresem nadpisuje poprzedni wpis.
    """
    def __init__(self):
        self._entries: Dict[PeerAddress, HandshakeOutcome] = {}

    def record(self, peer: Tuple[str, int], outcome: HandshakeOutcome):
        self._entries[PeerAddress(peer[0], peer[1])] = outcome

    def get(self, peer: Tuple[str, int]) -> Optional[HandshakeOutcome]:
        return self._entries.get(PeerAddress(peer[0], peer[1]))

    def all(self) -> List[Tuple[PeerAddress, HandshakeOutcome]]:
        return list(self._entries.items())

    def completed(self) -> List[PeerAddress]:
        return [peer for peer, outcome in self._entries.items() if outcome.ok]

    def __len__(self):
        return len(self._entries)

    def __contains__(self, peer):
        return PeerAddress(peer[0], peer[1]) in self._entries


class HandshakeManager:
    """Tries peers one at a time and writes every outcome to the ledger."""

    def __init__(self, ledger: Optional[HandshakeLedger] = None, network: Network = Network.MAINNET,
                 timeout: float = DEFAULT_TIMEOUT, port: Optional[int] = None):
        self.ledger = ledger if ledger is not None else HandshakeLedger()
        self.network = network
        self.timeout = timeout
        self.port = port if port is not None else network.default_port

    async def handshake(self, peer: Tuple[str, int]) -> HandshakeOutcome:
        peer = PeerAddress(peer[0], peer[1])
        outcome = await establish_handshake(peer, self.timeout, self.network)
        self.ledger.record(peer, outcome)

        if outcome.ok:
            logger.info("Handshake completed successfully with node: %s", peer)
        elif outcome.status is HandshakeStatus.TIMED_OUT:
            logger.warning("Handshake with %s timed out after %gs", peer, self.timeout)
        else:
            logger.warning("Handshake with %s failed: %s", peer, outcome)
        return outcome

    async def try_peers(self, peers: Iterable[Tuple[str, int]]) -> Optional[PeerAddress]:
        """Sequential: stops at the first completed handshake."""
        for peer in peers:
            outcome = await self.handshake(peer)
            if outcome.ok:
                return PeerAddress(peer[0], peer[1])
        return None

    async def handshake_seed(self, dns_index: int, peer_index: int) -> Tuple[PeerAddress, HandshakeOutcome]:
        peers = await async_resolve_seed(dns_index, self.port)
        if not 0 <= peer_index < len(peers):
            raise IndexOutOfRange(f"Bad peer index: {peer_index} (seed {dns_index} resolved {len(peers)} peers)")
        peer = peers[peer_index]
        logger.info("Handshake with peer by indexes: DNS %d, REMOTE %d -> %s", dns_index, peer_index, peer)
        return peer, await self.handshake(peer)

    async def discover(self, seed_index: Optional[int] = None) -> Optional[PeerAddress]:
        if seed_index is None:
            peers = sort_peers(await async_resolve_all(self.port))
        else:
            peers = await async_resolve_seed(seed_index, self.port)
        logger.info("Trying %d candidate peers", len(peers))
        return await self.try_peers(peers)
