#!/usr/bin/env python3
"""
iTunes Remote pairing

A remote advertises itself over mDNS with a pairing code in its TXT
record.  We prove we know the pin the user typed by hashing it together
with that code and asking the remote's /pair endpoint; it answers with a
DAAP cmpa container describing itself.
"""

import hashlib
import html
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiohttp
from aiohttp import web

from airplay.daap import DAAPError, daap_parse
from airplay.discovery.types import AirplayDevice

if TYPE_CHECKING:
    import airplay.config

REMOTE_PORT = 3690
REMOTE_TIMEOUT = 10.0
PIN_LENGTH = 4


class PairingError(Exception):
    """Base exception for pairing errors"""


class BadPinError(PairingError):
    """Pin was malformed or rejected by the remote"""


class InvalidPairingResponseError(PairingError):
    """Remote answered without a usable cmpa container"""


@dataclass
class Remote:
    """A paired remote"""

    name: str = ""
    type_: str = ""
    guid: str = ""

    def __str__(self) -> str:
        return f"{self.name} ({self.type_}) {self.guid}"


def pairing_code_hash(code: str, pin: str) -> str:
    """upper case hex MD5 of the pairing code followed by the pin digits, each padded with a NUL"""
    if len(pin) != PIN_LENGTH or not (pin.isascii() and pin.isdigit()):
        raise BadPinError(f"Pin must be {PIN_LENGTH} digits")

    payload = code.encode("utf-8") + b"".join(digit.encode("ascii") + b"\x00" for digit in pin)
    return hashlib.md5(payload).hexdigest().upper()  # nosec B324 - mandated by the protocol


def _decode_text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return ""


async def pair(
    device: AirplayDevice,
    pin: str,
    config: "airplay.config.ConfigFile | None" = None,
) -> Remote:
    """Pair with a discovered remote using the pin it is displaying"""
    pairingcode = pairing_code_hash(device.pairing_code(), pin)
    if not device.ip:
        raise PairingError(f"No address known for {device.name}")

    timeout = REMOTE_TIMEOUT
    if config:
        timeout = config.cparser.value("remote/timeout", type=float, defaultValue=REMOTE_TIMEOUT)

    url = f"http://{device.ip}:{device.port}/pair"
    params = {"pairingcode": pairingcode, "servicename": device.name}
    headers = {"Viewer-Only-Client": "1"}

    logging.debug("Pairing with %s at %s", device.name, url)
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        async with session.get(url, params=params, headers=headers) as response:
            body = await response.read()
            if response.status != 200:
                logging.info("Pairing with %s rejected: %s", device.name, response.status)
                raise BadPinError(f"Invalid pin ({response.status})")

    try:
        tags = daap_parse(body)
    except DAAPError as err:
        raise InvalidPairingResponseError("Invalid DAAP response received") from err

    cmpa = tags.get("cmpa")
    if not isinstance(cmpa, dict):
        raise InvalidPairingResponseError("Invalid DAAP response received")

    guid = cmpa.get("cmpg", b"")
    remote = Remote(
        name=_decode_text(cmpa.get("cmnm")),
        type_=_decode_text(cmpa.get("cmty")),
        guid=guid.hex().upper() if isinstance(guid, bytes) else "",
    )
    logging.info("Paired with %s", remote)
    return remote


class RemoteServer:
    """HTTP listener remotes talk back to once paired"""

    def __init__(self, config: "airplay.config.ConfigFile | None" = None):
        self.port = REMOTE_PORT
        if config:
            self.port = config.cparser.value("remote/port", type=int, defaultValue=REMOTE_PORT)
        self.config = config
        self.remotes: list[Remote] = []
        self.runner: web.AppRunner | None = None

    def create_runner(self) -> web.AppRunner:
        """setup http routing"""
        app = web.Application()
        app.add_routes([web.get("/server-info", self.server_info_handler)])
        return web.AppRunner(app)

    @staticmethod
    async def server_info_handler(request: web.Request) -> web.Response:
        """greet whoever asks"""
        return web.Response(text=f'Hello, "{html.escape(request.path)}"')

    async def start(self, host: str = "0.0.0.0") -> None:  # nosec B104
        """start listening"""
        self.runner = self.create_runner()
        await self.runner.setup()
        site = web.TCPSite(self.runner, host, self.port)
        await site.start()
        logging.info("Remote server listening on %s:%d", host, self.port)

    async def pair(self, device: AirplayDevice, pin: str) -> Remote:
        """pair and remember the remote"""
        remote = await pair(device, pin, config=self.config)
        self.remotes.append(remote)
        return remote

    async def stop(self) -> None:
        """stop listening"""
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
