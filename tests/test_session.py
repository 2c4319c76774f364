#!/usr/bin/env python3
"""Tests for the RTSP/HTTP control session and digest authentication"""

import asyncio
import contextlib
import hashlib

import pytest

from airplay.session.client import AirplaySession, digest_response
from airplay.session.types import (
    AuthState,
    AuthUnsupportedError,
    InvalidOptionsError,
    NoOptionsError,
    PasswordInvalidError,
    PasswordRequiredError,
    Response,
)

OPTIONS_OK = (
    b"RTSP/1.0 200 OK\r\n"
    b"Public: ANNOUNCE, SETUP, RECORD, PAUSE, FLUSH, TEARDOWN, OPTIONS, GET_PARAMETER, SET_PARAMETER\r\n"
    b"Server: AirTunes/105.1\r\n"
    b"\r\n"
)
OPTIONS_NO_ANNOUNCE = b"RTSP/1.0 200 OK\r\nPublic: SETUP, RECORD, TEARDOWN, OPTIONS\r\n\r\n"
NOT_FOUND = b"RTSP/1.0 404 Not Found\r\n\r\n"
CHALLENGE = b'RTSP/1.0 401 Unauthorized\r\nWWW-Authenticate: Digest realm="raop", nonce="b3a1c2"\r\n\r\n'
BASIC_CHALLENGE = b'RTSP/1.0 401 Unauthorized\r\nWWW-Authenticate: Basic realm="raop"\r\n\r\n'
NO_CHALLENGE = b"RTSP/1.0 401 Unauthorized\r\n\r\n"
SERVER_INFO = b"HTTP/1.1 200 OK\r\nContent-Type: text/x-apple-plist+xml\r\nContent-Length: 11\r\n\r\n<plist/>\n\n\n"


async def read_request(reader):
    """read one request; None once the client goes away"""
    try:
        raw = await reader.readuntil(b"\r\n\r\n")
    except (asyncio.IncompleteReadError, ConnectionError):
        return None
    lines = raw.decode("utf-8").split("\r\n")
    headers = {}
    for line in lines[1:]:
        if line:
            key, _, value = line.partition(":")
            headers[key.strip()] = value.strip()
    return lines[0], headers


class FakeDevice:
    """answers each request with the next canned response"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []
        self.port = 0

    async def handle(self, reader, writer):
        """serve one connection"""
        while self.responses:
            request = await read_request(reader)
            if request is None:
                break
            self.requests.append(request)
            writer.write(self.responses.pop(0))
            await writer.drain()
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()


async def silent_handler(reader, writer):
    """accept the connection, never answer, wait for the client to hang up"""
    await reader.read()
    writer.close()
    with contextlib.suppress(ConnectionError):
        await writer.wait_closed()


@contextlib.asynccontextmanager
async def fake_device(*responses):
    """run a FakeDevice on a loopback port"""
    device = FakeDevice(responses)
    server = await asyncio.start_server(device.handle, "127.0.0.1", 0)
    device.port = server.sockets[0].getsockname()[1]
    try:
        yield device
    finally:
        server.close()


def expected_authorization(username, password, method, path):
    """Authorization header for the canned challenge"""
    ha1 = hashlib.md5(f"{username}:raop:{password}".encode()).hexdigest()
    ha2 = hashlib.md5(f"{method}:{path}".encode()).hexdigest()
    response = hashlib.md5(f"{ha1}:b3a1c2:{ha2}".encode()).hexdigest()
    return (
        f'Digest username="{username}", realm="raop", nonce="b3a1c2", '
        f'uri="{path}", response="{response}"'
    )


def test_digest_response():
    """test the digest hash chain"""
    ha1 = hashlib.md5(b"iTunes:raop:secret").hexdigest()
    ha2 = hashlib.md5(b"OPTIONS:*").hexdigest()

    assert digest_response("iTunes", "raop", "secret", "abc", "OPTIONS", "*") == hashlib.md5(
        f"{ha1}:abc:{ha2}".encode()
    ).hexdigest()


def test_response_header_lookup():
    """test header lookups ignore case"""
    resp = Response(proto="RTSP/1.0", status_code=200, reason="OK", headers={"public": "ANNOUNCE"})

    assert resp.header("Public") == "ANNOUNCE"
    assert resp.header("CSeq") == ""
    assert resp.status == "200 OK"


@pytest.mark.asyncio
async def test_dial():
    """test a successful dial checks OPTIONS"""
    async with fake_device(OPTIONS_OK) as device:
        session = await AirplaySession.dial("127.0.0.1", device.port, session_id="1234")
        try:
            assert session.is_connected()
        finally:
            await session.close()

    requestline, headers = device.requests[0]
    assert requestline == "OPTIONS * RTSP/1.0"
    assert headers["CSeq"] == "1"
    assert headers["Content-Length"] == "0"
    assert headers["X-Apple-Session-ID"] == "1234"
    assert headers["User-Agent"].startswith("airplay/")
    assert "Authorization" not in headers
    assert not session.is_connected()


@pytest.mark.asyncio
async def test_dial_uses_config(bootstrap):
    """test user agent and timeout come from the config"""
    config = bootstrap
    config.cparser.setValue("session/useragent", "iTunes/10.6 (Macintosh; Intel Mac OS X 10.7.3)")
    config.cparser.setValue("session/timeout", 2.5)

    async with fake_device(OPTIONS_OK) as device:
        session = await AirplaySession.dial("127.0.0.1", device.port, config=config)
        await session.close()

    assert session.timeout == 2.5
    assert device.requests[0][1]["User-Agent"] == "iTunes/10.6 (Macintosh; Intel Mac OS X 10.7.3)"


@pytest.mark.asyncio
async def test_dial_without_announce():
    """test OPTIONS must list ANNOUNCE"""
    async with fake_device(OPTIONS_NO_ANNOUNCE) as device:
        with pytest.raises(InvalidOptionsError):
            await AirplaySession.dial("127.0.0.1", device.port)


@pytest.mark.asyncio
async def test_dial_no_response():
    """test a device that hangs up without answering"""
    async with fake_device() as device:
        with pytest.raises(NoOptionsError):
            await AirplaySession.dial("127.0.0.1", device.port)


@pytest.mark.asyncio
async def test_dial_silent_device(bootstrap):
    """test a device that accepts the connection but never answers"""
    config = bootstrap
    config.cparser.setValue("session/timeout", 0.5)

    server = await asyncio.start_server(silent_handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        with pytest.raises(NoOptionsError):
            await asyncio.wait_for(
                AirplaySession.dial("127.0.0.1", port, config=config), timeout=5
            )
    finally:
        server.close()


@pytest.mark.asyncio
async def test_dial_options_rejected():
    """test a non-200 answer to OPTIONS"""
    async with fake_device(NOT_FOUND) as device:
        with pytest.raises(NoOptionsError):
            await AirplaySession.dial("127.0.0.1", device.port)


@pytest.mark.asyncio
async def test_password_required():
    """test a challenge without a configured password"""
    async with fake_device(CHALLENGE) as device:
        with pytest.raises(PasswordRequiredError):
            await AirplaySession.dial("127.0.0.1", device.port)


@pytest.mark.asyncio
async def test_password_invalid():
    """test two challenges in a row for the same request"""
    async with fake_device(CHALLENGE, CHALLENGE) as device:
        with pytest.raises(PasswordInvalidError):
            await AirplaySession.dial("127.0.0.1", device.port, password="wrong")

    assert len(device.requests) == 2


@pytest.mark.asyncio
async def test_challenge_then_success():
    """test one retry with credentials, then cached credentials on later requests"""
    async with fake_device(CHALLENGE, OPTIONS_OK, SERVER_INFO) as device:
        session = await AirplaySession.dial("127.0.0.1", device.port, password="secret")
        try:
            assert session.realm == "raop"
            assert session.nonce == "b3a1c2"
            assert session.auth_state == AuthState.RETRIED

            body = await session.get_server_info()
            assert session.auth_state == AuthState.CHALLENGED
        finally:
            await session.close()

    assert body == b"<plist/>\n\n\n"

    first, retry, info = device.requests
    assert "Authorization" not in first[1]
    assert retry[0] == "OPTIONS * RTSP/1.0"
    assert retry[1]["CSeq"] == "2"
    assert retry[1]["Authorization"] == expected_authorization("iTunes", "secret", "OPTIONS", "*")
    assert info[0] == "GET /server-info HTTP/1.1"
    assert info[1]["Authorization"] == expected_authorization(
        "iTunes", "secret", "GET", "/server-info"
    )


@pytest.mark.asyncio
async def test_cached_credentials_rejected():
    """test a 401 after credentials were accepted does not retry"""
    async with fake_device(CHALLENGE, OPTIONS_OK, CHALLENGE) as device:
        session = await AirplaySession.dial("127.0.0.1", device.port, password="secret")
        try:
            with pytest.raises(PasswordInvalidError):
                await session.make_rtsp_request("OPTIONS", "*")
        finally:
            await session.close()

    assert len(device.requests) == 3


@pytest.mark.asyncio
async def test_basic_challenge_unsupported():
    """test non-Digest challenges"""
    async with fake_device(BASIC_CHALLENGE) as device:
        with pytest.raises(AuthUnsupportedError):
            await AirplaySession.dial("127.0.0.1", device.port, password="secret")


@pytest.mark.asyncio
async def test_missing_challenge_unsupported():
    """test a 401 without WWW-Authenticate"""
    async with fake_device(NO_CHALLENGE) as device:
        with pytest.raises(AuthUnsupportedError):
            await AirplaySession.dial("127.0.0.1", device.port, password="secret")


@pytest.mark.asyncio
async def test_request_without_connection():
    """test requests on a session that was never connected"""
    session = AirplaySession()

    assert not session.is_connected()
    with pytest.raises(ConnectionError):
        await session.make_rtsp_request("OPTIONS", "*")
