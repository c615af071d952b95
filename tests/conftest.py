"""
Fixtures used in the tests: local asyncio responders and a fake resolver
"""
import asyncio
import socket
from contextlib import asynccontextmanager

import pytest

from errors import BitLabError
from messages import Network, build_verack_message, build_version_message, read_message, serialize
from peer_discovery import PeerAddress


@asynccontextmanager
async def serve(handler):
    """Run `handler` as a one-shot TCP responder on 127.0.0.1, yield its address."""
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    try:
        yield PeerAddress("127.0.0.1", server.sockets[0].getsockname()[1])
    finally:
        server.close()


def free_port() -> int:
    """A port nothing listens on (connections get refused)."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def local_version(writer):
    return build_version_message(writer.get_extra_info("sockname")[:2], writer.get_extra_info("peername")[:2])


def compliant_handler(network: Network = Network.MAINNET):
    """Full 4-step responder: recv version, send version, recv verack, send verack."""
    async def handler(reader, writer):
        try:
            await read_message(reader, network)
            writer.write(serialize(local_version(writer), network))
            await writer.drain()
            await read_message(reader, network)
            writer.write(serialize(build_verack_message(), network))
            await writer.drain()
            await reader.read()
        except (ConnectionError, BitLabError):
            pass
        finally:
            writer.close()
    return handler


@pytest.fixture
def compliant():
    return compliant_handler


@pytest.fixture
def responder():
    return serve


@pytest.fixture
def version_for():
    return local_version


@pytest.fixture
def refused_peer():
    return PeerAddress("127.0.0.1", free_port())


@pytest.fixture
def fake_dns(monkeypatch):
    """
    Replace socket.getaddrinfo with a table lookup.
    Returns the dict so a test can fill it: {hostname: [ip, ...]}
    """
    table = {}

    def getaddrinfo(host, port, family=0, type=0, proto=0, flags=0):
        if host not in table:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        infos = []
        for ip in table[host]:
            if ":" in ip:
                infos.append((socket.AF_INET6, socket.SOCK_STREAM, 6, "", (ip, port, 0, 0)))
            else:
                infos.append((socket.AF_INET, socket.SOCK_STREAM, 6, "", (ip, port)))
        return infos

    monkeypatch.setattr(socket, "getaddrinfo", getaddrinfo)
    return table
