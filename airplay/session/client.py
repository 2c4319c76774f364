#!/usr/bin/env python3
"""
AirPlay Control Channel

This module handles the RTSP/HTTP connection to a device, including the
Digest authentication handshake.  A 401 challenge is answered once per
request; a second 401 means the password is wrong.
"""

import asyncio
import contextlib
import hashlib
import logging
import re
import uuid
from typing import TYPE_CHECKING

import airplay.version

from .types import (
    DEFAULT_TIMEOUT,
    HTTP_PROTOCOL,
    REALM_USERNAMES,
    RTSP_PROTOCOL,
    AuthState,
    AuthUnsupportedError,
    InvalidOptionsError,
    NoOptionsError,
    PasswordInvalidError,
    PasswordRequiredError,
    Response,
)

if TYPE_CHECKING:
    import ipaddress

    import airplay.config

CHALLENGE_PARAM_RE = re.compile(r'(\w+)\s*=\s*(?:"([^"]*)"|([^\s,]+))')


def md5hex(text: str) -> str:
    """lower case hex MD5 of a string"""
    return hashlib.md5(text.encode("utf-8")).hexdigest()  # nosec B324 - mandated by the protocol


def digest_response(  # pylint: disable=too-many-arguments
    username: str, realm: str, password: str, nonce: str, method: str, path: str
) -> str:
    """RFC 2069 style digest, no qop"""
    ha1 = md5hex(f"{username}:{realm}:{password}")
    ha2 = md5hex(f"{method}:{path}")
    return md5hex(f"{ha1}:{nonce}:{ha2}")


class AirplaySession:  # pylint: disable=too-many-instance-attributes
    """One control connection to a device"""

    def __init__(
        self,
        password: str = "",
        session_id: str | None = None,
        config: "airplay.config.ConfigFile | None" = None,
    ):
        self.password = password
        self.session_id = session_id or str(uuid.uuid4())
        self.cseq = 0
        self.realm = ""
        self.nonce = ""
        self.auth_state = AuthState.NO_CHALLENGE
        self.useragent = f"airplay/{airplay.version.__VERSION__}"
        self.timeout = DEFAULT_TIMEOUT
        if config:
            self.useragent = config.cparser.value("session/useragent", defaultValue=self.useragent)
            self.timeout = config.cparser.value(
                "session/timeout", type=float, defaultValue=DEFAULT_TIMEOUT
            )
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None

    @classmethod
    async def dial(  # pylint: disable=too-many-arguments
        cls,
        host: "str | ipaddress.IPv4Address",
        port: int,
        password: str = "",
        session_id: str | None = None,
        config: "airplay.config.ConfigFile | None" = None,
    ) -> "AirplaySession":
        """Connect and make sure the device speaks RAOP"""
        session = cls(password=password, session_id=session_id, config=config)
        await session.connect(host, port)
        try:
            await session.check_options()
        except Exception:
            await session.close()
            raise
        return session

    async def connect(self, host: "str | ipaddress.IPv4Address", port: int) -> None:
        """Open the TCP connection"""
        logging.debug("Connecting to %s:%d", host, port)
        self.reader, self.writer = await asyncio.wait_for(
            asyncio.open_connection(str(host), port), timeout=self.timeout
        )

    async def check_options(self) -> None:
        """OPTIONS * must come back 200 and list ANNOUNCE"""
        try:
            resp = await self.make_rtsp_request("OPTIONS", "*")
        except (ConnectionError, asyncio.IncompleteReadError, asyncio.TimeoutError) as err:
            logging.debug("No answer to OPTIONS: %r", err)
            raise NoOptionsError("Airplay server did not respond to OPTIONS request") from err

        if resp.status_code != 200:
            raise NoOptionsError(f"Airplay server answered OPTIONS with {resp.status}")

        methods = resp.header("Public")
        if "ANNOUNCE" not in methods:
            raise InvalidOptionsError(f"Airplay server reported invalid OPTIONS: {methods!r}")

    def is_connected(self) -> bool:
        """True once a connection has been opened and not closed"""
        return self.writer is not None

    async def get_server_info(self) -> bytes:
        """HTTP GET /server-info"""
        resp = await self.make_http_request("GET", "/server-info")
        return resp.body

    async def make_rtsp_request(self, method: str, path: str) -> Response:
        """Send an RTSP request, answering a digest challenge if needed"""
        return await self._request(method, path, RTSP_PROTOCOL)

    async def make_http_request(self, method: str, path: str) -> Response:
        """Send an HTTP request, answering a digest challenge if needed"""
        return await self._request(method, path, HTTP_PROTOCOL)

    async def _request(self, method: str, path: str, proto: str) -> Response:
        self.auth_state = AuthState.CHALLENGED if self.realm else AuthState.NO_CHALLENGE
        while True:
            resp = await self._exchange(method, path, proto)
            if resp.status_code != 401:
                return resp

            if not self.password:
                raise PasswordRequiredError("Password required")
            if self.auth_state != AuthState.NO_CHALLENGE:
                raise PasswordInvalidError("Password invalid")

            self._parse_challenge(resp)
            self.auth_state = AuthState.RETRIED
            logging.debug("Retrying %s %s with digest auth for realm %s", method, path, self.realm)

    def _parse_challenge(self, resp: Response) -> None:
        """Cache realm and nonce from WWW-Authenticate"""
        challenge = resp.header("WWW-Authenticate")
        scheme, _, params = challenge.strip().partition(" ")
        if scheme != "Digest":
            raise AuthUnsupportedError(f"Authentication not supported: {challenge!r}")

        for key, quoted, bare in CHALLENGE_PARAM_RE.findall(params):
            if key == "realm":
                self.realm = quoted or bare
            elif key == "nonce":
                self.nonce = quoted or bare

    def authorization(self, method: str, path: str) -> str:
        """Authorization header value for the cached challenge"""
        username = REALM_USERNAMES.get(self.realm, "")
        response = digest_response(username, self.realm, self.password, self.nonce, method, path)
        return (
            f'Digest username="{username}", realm="{self.realm}", nonce="{self.nonce}", '
            f'uri="{path}", response="{response}"'
        )

    async def _exchange(self, method: str, path: str, proto: str) -> Response:
        """write one request, read one response"""
        if not self.writer or not self.reader:
            raise ConnectionError("Not connected")

        self.cseq += 1
        lines = [
            f"{method} {path} {proto}",
            "Content-Length: 0",
            f"User-Agent: {self.useragent}",
            f"X-Apple-Session-ID: {self.session_id}",
            f"CSeq: {self.cseq}",
        ]
        if self.realm:
            lines.append(f"Authorization: {self.authorization(method, path)}")

        self.writer.write(("\r\n".join(lines) + "\r\n\r\n").encode("utf-8"))
        await self.writer.drain()

        return await asyncio.wait_for(self._read_response(), timeout=self.timeout)

    async def _read_response(self) -> Response:
        statusline = (await self.reader.readline()).decode("utf-8", errors="replace").strip()
        if not statusline:
            raise ConnectionResetError("Connection closed before a response was received")

        parts = statusline.split(" ", 2)  # proto, code, reason
        if len(parts) < 2 or not parts[1].isdigit():
            raise ConnectionError(f"Malformed status line: {statusline!r}")

        headers: dict[str, str] = {}
        while True:
            line = (await self.reader.readline()).decode("utf-8", errors="replace").strip()
            if not line:
                break
            key, _, value = line.partition(":")
            headers[key.strip().lower()] = value.strip()

        body = b""
        with contextlib.suppress(ValueError):
            if length := int(headers.get("content-length", "0")):
                body = await self.reader.readexactly(length)

        logging.debug("Response: %s", statusline)
        return Response(
            proto=parts[0],
            status_code=int(parts[1]),
            reason=parts[2] if len(parts) > 2 else "",
            headers=headers,
            body=body,
        )

    async def close(self) -> None:
        """Close the connection"""
        if self.writer:
            with contextlib.suppress(Exception):
                self.writer.close()
                await self.writer.wait_closed()
        self.writer = None
        self.reader = None
