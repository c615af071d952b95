"""
DNS seeds

Predefined DNS seeds taken from:
    https://github.com/bitcoin/bitcoin/blob/v24.0.1/src/chainparams.cpp#L123

resolve()/resolve_all() never raise on DNS errors: a seed that fails to
resolve is logged and contributes no addresses.
"""
import asyncio
import ipaddress
import socket
from typing import Iterable, List, NamedTuple, Optional, Set, Tuple

from errors import DnsLookupError, IndexOutOfRange
from log import get_logger
from messages import Network

logger = get_logger(__name__)

DEFAULT_PORT = Network.MAINNET.default_port

DEFAULT_DNS_SEEDS: Tuple[str, ...] = (
    "seed.bitcoin.sipa.be.",
    "dnsseed.bluematt.me.",
    "dnsseed.bitcoin.dashjr.org.",
    "seed.bitcoinstats.com.",
    "seed.bitcoin.jonasschnelli.ch.",
    "seed.btc.petertodd.org.",
    "seed.bitcoin.sprovoost.nl.",
    "dnsseed.emzy.de.",
    "seed.bitcoin.wiz.biz.",
)


class PeerAddress(NamedTuple):
    """IP + port; hashable, so it can key the ledger directly."""
    ip: str
    port: int = DEFAULT_PORT

    def __str__(self):
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"

    @classmethod
    def parse(cls, text: str, default_port: int = DEFAULT_PORT) -> "PeerAddress":
        """Accepts 1.2.3.4:8333, [2001:db8::1]:8333 or a bare IP."""
        text = text.strip()
        port: Optional[str] = None
        if text.startswith("["):
            host, sep, rest = text[1:].partition("]")
            if not sep or (rest and not rest.startswith(":")):
                raise ValueError(f"Bad peer address: {text!r}")
            port = rest[1:] if rest else None
        elif text.count(":") == 1:
            host, port = text.split(":")
        else:
            host = text

        try:
            ip = str(ipaddress.ip_address(host))
        except ValueError:
            raise ValueError(f"Not an IP address: {host!r}")

        if port is None:
            return cls(ip, default_port)
        if not port.isdigit() or not 0 < int(port) < 65536:
            raise ValueError(f"Bad port: {port!r}")
        return cls(ip, int(port))


def _sort_key(peer: PeerAddress):
    addr = ipaddress.ip_address(peer.ip)
    return addr.version, int(addr), peer.port


def sort_peers(peers: Iterable[PeerAddress]) -> List[PeerAddress]:
    """Stable, index-addressable order: IPv4 first, then by address and port."""
    return sorted(set(peers), key=_sort_key)


def _to_peers(infos) -> Set[PeerAddress]:
    # sockaddr: (ip, port) albo (ip, port, flowinfo, scope_id) dla IPv6
    return {PeerAddress(info[4][0], info[4][1]) for info in infos}


#  Tabela seedów

def default_hostnames() -> Tuple[str, ...]:
    return DEFAULT_DNS_SEEDS


def hostname_at(index: int) -> str:
    if not 0 <= index < len(DEFAULT_DNS_SEEDS):
        raise IndexOutOfRange(f"Bad DNS seed index: {index} (have {len(DEFAULT_DNS_SEEDS)})")
    return DEFAULT_DNS_SEEDS[index]


#  Rozwiązywanie DNS

def lookup(hostname: str, port: int = DEFAULT_PORT) -> Set[PeerAddress]:
    """Strict lookup: raises DnsLookupError when the name does not resolve."""
    try:
        infos = socket.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError) as e:
        raise DnsLookupError(f"Failed to lookup dns seed {hostname}:{port}: {e}") from e
    return _to_peers(infos)


def resolve(hostname: str, port: int = DEFAULT_PORT) -> Set[PeerAddress]:
    """Zwraca adresy z domeny seed; błąd DNS daje pusty zbiór."""
    try:
        peers = lookup(hostname, port)
    except DnsLookupError as e:
        logger.warning("Błąd DNS lookup: %s", e)
        return set()
    logger.debug("DNS seed %s -> %d addresses", hostname, len(peers))
    return peers


def resolve_all(port: int = DEFAULT_PORT) -> Set[PeerAddress]:
    peers: Set[PeerAddress] = set()
    for hostname in DEFAULT_DNS_SEEDS:
        peers |= resolve(hostname, port)
    return peers


def resolve_seed(index: int, port: int = DEFAULT_PORT) -> List[PeerAddress]:
    """Resolve one seed by its table index into a sorted peer list."""
    return sort_peers(resolve(hostname_at(index), port))


#  Wersje async (getaddrinfo z pętli zdarzeń)

async def async_lookup(hostname: str, port: int = DEFAULT_PORT) -> Set[PeerAddress]:
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, port, type=socket.SOCK_STREAM)
    except (OSError, UnicodeError) as e:
        raise DnsLookupError(f"Failed to lookup dns seed {hostname}:{port}: {e}") from e
    return _to_peers(infos)


async def async_resolve(hostname: str, port: int = DEFAULT_PORT) -> Set[PeerAddress]:
    try:
        peers = await async_lookup(hostname, port)
    except DnsLookupError as e:
        logger.warning("Błąd DNS lookup: %s", e)
        return set()
    logger.debug("DNS seed %s -> %d addresses", hostname, len(peers))
    return peers


async def async_resolve_all(port: int = DEFAULT_PORT) -> Set[PeerAddress]:
    results = await asyncio.gather(*(async_resolve(h, port) for h in DEFAULT_DNS_SEEDS))
    peers: Set[PeerAddress] = set()
    for found in results:
        peers |= found
    return peers


async def async_resolve_seed(index: int, port: int = DEFAULT_PORT) -> List[PeerAddress]:
    return sort_peers(await async_resolve(hostname_at(index), port))
