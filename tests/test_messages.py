import asyncio
import struct
import time
from io import BytesIO

import pytest

from errors import DecodeError, TruncatedStreamError
from messages import (HEADER_LEN, MAX_PAYLOAD_LEN, PROTOCOL_VERSION, USER_AGENT, Network, VerackMessage,
                      VersionMessage, bitcoin_message, build_verack_message, build_version_message,
                      parse_next, read_message, serialize, sha256d)

LOCAL = ("192.168.1.10", 50123)
REMOTE = ("203.0.113.7", 8333)

# magic + "verack" + len 0 + sha256d(b"")[:4]
VERACK_MAINNET = bytes.fromhex("f9beb4d9" "76657261636b000000000000" "00000000" "5df6e0e2")


def test_verack_wire_bytes():
    assert serialize(build_verack_message()) == VERACK_MAINNET


def test_verack_testnet_magic():
    raw = serialize(build_verack_message(), Network.TESTNET)
    assert raw[:4] == bytes.fromhex("0b110907")
    assert raw[4:] == VERACK_MAINNET[4:]


def test_envelope_layout():
    payload = b"\x01\x02\x03"
    raw = bitcoin_message("version", payload)
    assert raw[:4] == Network.MAINNET.magic
    assert raw[4:16] == b"version\x00\x00\x00\x00\x00"
    assert struct.unpack("<I", raw[16:20])[0] == 3
    assert raw[20:24] == sha256d(payload)[:4]
    assert raw[HEADER_LEN:] == payload


def test_command_too_long():
    with pytest.raises(ValueError):
        bitcoin_message("averyverylongcmd", b"")


def test_build_version_defaults():
    msg = build_version_message(LOCAL, REMOTE)
    assert msg.version == PROTOCOL_VERSION
    assert msg.services == 0
    assert msg.user_agent == USER_AGENT
    assert msg.start_height == 0
    assert msg.addr_recv.ip == REMOTE[0] and msg.addr_recv.port == REMOTE[1]
    assert msg.addr_from.ip == LOCAL[0] and msg.addr_from.port == LOCAL[1]


def test_version_payload_layout():
    msg = build_version_message(LOCAL, REMOTE)
    payload = msg.payload()
    assert struct.unpack("<i", payload[0:4])[0] == PROTOCOL_VERSION
    assert struct.unpack("<q", payload[12:20])[0] == msg.timestamp
    # addr_recv: services(8) + ip(16) + port(2, big endian)
    assert payload[28:44] == b"\x00" * 10 + b"\xff\xff" + bytes([203, 0, 113, 7])
    assert payload[44:46] == struct.pack(">H", 8333)
    assert struct.unpack("<Q", payload[72:80])[0] == msg.nonce
    assert payload[80] == len(USER_AGENT)
    assert payload[-1:] == b"\x01"


def test_version_round_trip():
    before = int(time.time())
    original = build_version_message(LOCAL, REMOTE)
    command, parsed = parse_next(serialize(original))

    assert command == "version"
    assert isinstance(parsed, VersionMessage)
    assert parsed == original
    assert before <= parsed.timestamp <= int(time.time()) + 1


def test_nonce_is_fresh():
    first = build_version_message(LOCAL, REMOTE)
    second = build_version_message(LOCAL, REMOTE)
    assert first.nonce != second.nonce


def test_version_ipv6_addresses():
    original = build_version_message(("2001:db8::2", 40000), ("2001:db8::1", 8333))
    _, parsed = parse_next(serialize(original))
    assert parsed.addr_recv.ip == "2001:db8::1"
    assert parsed.addr_from.ip == "2001:db8::2"


def test_version_without_relay_byte():
    payload = build_version_message(LOCAL, REMOTE).payload()[:-1]
    _, parsed = parse_next(bitcoin_message("version", payload))
    assert parsed.relay is True


def test_version_payload_too_short():
    payload = build_version_message(LOCAL, REMOTE).payload()[:50]
    with pytest.raises(DecodeError) as exc:
        parse_next(bitcoin_message("version", payload))
    assert not isinstance(exc.value, TruncatedStreamError)


def test_verack_with_payload_rejected():
    with pytest.raises(DecodeError):
        parse_next(bitcoin_message("verack", b"\x00"))


def test_bad_checksum():
    raw = bytearray(serialize(build_version_message(LOCAL, REMOTE)))
    raw[-1] ^= 0xff
    with pytest.raises(DecodeError, match="Checksum"):
        parse_next(bytes(raw))


def test_wrong_magic():
    raw = serialize(build_verack_message(), Network.REGTEST)
    with pytest.raises(DecodeError, match="magic"):
        parse_next(raw)
    # ta sama wiadomość jest poprawna dla regtest
    assert parse_next(raw, Network.REGTEST)[0] == "verack"


def test_unknown_command():
    with pytest.raises(DecodeError, match="Unknown command"):
        parse_next(bitcoin_message("ping", b"\x00" * 8))


def test_command_garbage_after_padding():
    raw = bytearray(VERACK_MAINNET)
    raw[14] = ord("x")
    with pytest.raises(DecodeError):
        parse_next(bytes(raw))


def test_oversized_payload_length():
    header = Network.MAINNET.magic + b"version".ljust(12, b"\x00") + struct.pack("<I", MAX_PAYLOAD_LEN + 1)
    with pytest.raises(DecodeError, match="too large"):
        parse_next(header + b"\x00" * 4)


def test_parse_next_truncated():
    raw = serialize(build_version_message(LOCAL, REMOTE))
    with pytest.raises(TruncatedStreamError):
        parse_next(BytesIO(raw[:HEADER_LEN + 5]))
    with pytest.raises(TruncatedStreamError):
        parse_next(BytesIO(b""))


def test_parse_next_consumes_one_envelope():
    stream = BytesIO(VERACK_MAINNET + VERACK_MAINNET)
    parse_next(stream)
    assert stream.read() == VERACK_MAINNET


@pytest.mark.asyncio
async def test_read_message_from_stream_reader():
    reader = asyncio.StreamReader()
    reader.feed_data(serialize(build_version_message(LOCAL, REMOTE)))
    reader.feed_data(VERACK_MAINNET)
    reader.feed_eof()

    assert (await read_message(reader))[0] == "version"
    assert (await read_message(reader))[0] == "verack"
    with pytest.raises(TruncatedStreamError):
        await read_message(reader)


@pytest.mark.asyncio
async def test_read_message_truncated_payload():
    reader = asyncio.StreamReader()
    reader.feed_data(serialize(build_version_message(LOCAL, REMOTE))[:40])
    reader.feed_eof()
    with pytest.raises(TruncatedStreamError):
        await read_message(reader)
