#!/usr/bin/env python3
"""
Discovery Connection Manager

This module owns the multicast socket.  It sends the bootstrap query, runs
the receive task that decodes and filters datagrams, and runs the registry
task that folds relevant messages into the device registry and hands each
resulting snapshot to the consumer.

Relevant RFCs:
http://www.ietf.org/rfc/rfc6762.txt - Multicast DNS
http://www.ietf.org/rfc/rfc6763.txt - DNS-Based Service Discovery
"""

import asyncio
import contextlib
import logging
import socket
import struct
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from airplay.dns.protocol import DNSProtocol
from airplay.dns.types import CLASS_IN, TYPE_PTR, DNSMessage, ParseError, Question

from .registry import DeviceRegistry
from .types import DEFAULT_SERVICES, MDNS_BUFSIZE, MDNS_GROUP, MDNS_PORT, AirplayDevice

if TYPE_CHECKING:
    import airplay.config


def create_multicast_socket(group: str = MDNS_GROUP, port: int = MDNS_PORT) -> socket.socket:
    """UDP socket bound to the mDNS port and joined to the multicast group"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        with contextlib.suppress(OSError):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
    sock.bind(("", port))

    mreq = struct.pack("=4s4s", socket.inet_aton(group), socket.inet_aton("0.0.0.0"))
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 255)
    sock.setblocking(False)
    return sock


class DiscoveryManager:  # pylint: disable=too-many-instance-attributes
    """Manages the multicast socket and keeps the device registry current"""

    def __init__(
        self,
        config: "airplay.config.ConfigFile | None" = None,
        registry: DeviceRegistry | None = None,
    ):
        self.config = config
        self.registry = registry or DeviceRegistry()
        self.group = MDNS_GROUP
        self.port = MDNS_PORT
        self.bufsize = MDNS_BUFSIZE
        self.services = list(DEFAULT_SERVICES)
        if config:
            self.group = config.cparser.value("discovery/group", defaultValue=MDNS_GROUP)
            self.port = config.cparser.value("discovery/port", type=int, defaultValue=MDNS_PORT)
            self.bufsize = config.cparser.value(
                "discovery/bufsize", type=int, defaultValue=MDNS_BUFSIZE
            )
            self.services = config.getlist("discovery/services") or list(DEFAULT_SERVICES)

        self.sock: socket.socket | None = None
        # both queues hold one item so each stage waits on the next
        self.messages: asyncio.Queue[DNSMessage] = asyncio.Queue(maxsize=1)
        self.snapshots: asyncio.Queue[list[AirplayDevice]] = asyncio.Queue(maxsize=1)
        self.tasks: list[asyncio.Task] = []

    def build_query(self) -> bytes:
        """PTR question for every service we browse"""
        msg = DNSMessage()
        for service in self.services:
            msg.add_question(Question(name=service, type_=TYPE_PTR, class_=CLASS_IN))
        return DNSProtocol.pack(msg)

    @staticmethod
    def decode_datagram(data: bytes) -> DNSMessage | None:
        """Decode a datagram; None if it does not concern AirPlay services"""
        msg = DNSProtocol.parse(data)
        if not DeviceRegistry.is_relevant(msg):
            return None
        return msg

    async def start(self, sock: socket.socket | None = None) -> None:
        """Send the bootstrap query and start the receive and registry tasks"""
        if self.tasks:
            raise RuntimeError("Discovery already running")

        self.sock = sock or create_multicast_socket(self.group, self.port)
        self.sock.setblocking(False)

        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendto(self.sock, self.build_query(), (self.group, self.port))
        except OSError as err:
            logging.error("Discovery query failed: %s", err)
            self.sock.close()
            self.sock = None
            raise
        logging.info("Sent discovery query for %s", ", ".join(self.services))

        self.tasks = [
            asyncio.create_task(self._receive_loop(), name="airplay-discovery-receive"),
            asyncio.create_task(self._registry_loop(), name="airplay-discovery-registry"),
        ]

    async def _receive_loop(self) -> None:
        """Decode and filter datagrams; errors end discovery"""
        loop = asyncio.get_running_loop()
        while True:
            try:
                data, addr = await loop.sock_recvfrom(self.sock, self.bufsize)
                msg = self.decode_datagram(data)
            except (OSError, ParseError) as err:
                logging.error("Discovery receive failed: %s", err)
                raise

            if not msg:
                logging.debug("Discarding unrelated mDNS message from %s", addr)
                continue

            logging.debug("Relevant mDNS message from %s", addr)
            await self.messages.put(msg)

    async def _registry_loop(self) -> None:
        """Sole writer of the registry"""
        while True:
            msg = await self.messages.get()
            self.registry.apply_message(msg)
            await self.snapshots.put(self.registry.snapshot())
            # wait for the consumer to take it before looking at the next message
            await self.snapshots.join()

    async def devices(self) -> AsyncIterator[list[AirplayDevice]]:
        """
        Yield a registry snapshot after every relevant message

        Raises whatever ended the receive or registry task.
        """
        while self.tasks:
            getter = asyncio.ensure_future(self.snapshots.get())
            try:
                done, _ = await asyncio.wait(
                    {getter, *self.tasks}, return_when=asyncio.FIRST_COMPLETED
                )
            except asyncio.CancelledError:
                getter.cancel()
                raise

            if getter.done():
                self.snapshots.task_done()
                yield getter.result()
                continue

            getter.cancel()
            for task in done:
                if not task.cancelled() and task.exception():
                    raise task.exception()
            return

    async def cleanup(self) -> None:
        """Stop all tasks and close the socket"""
        for task in self.tasks:
            task.cancel()

        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks.clear()

        if self.sock:
            self.sock.close()
            self.sock = None


async def discover(
    config: "airplay.config.ConfigFile | None" = None,
    sock: socket.socket | None = None,
) -> AsyncIterator[list[AirplayDevice]]:
    """
    Browse for AirPlay devices until the caller stops iterating

    ``sock`` replaces the multicast socket; it is closed when browsing ends.
    """
    manager = DiscoveryManager(config=config)
    try:
        await manager.start(sock=sock)
        async for snapshot in manager.devices():
            yield snapshot
    finally:
        await manager.cleanup()
