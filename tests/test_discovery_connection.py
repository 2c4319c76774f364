#!/usr/bin/env python3
"""Tests for the discovery connection manager"""
# pylint: disable=protected-access

import asyncio
import contextlib
import ipaddress
import socket
import unittest.mock

import pytest

from airplay.discovery.connection import DiscoveryManager, discover
from airplay.dns.protocol import DNSProtocol
from airplay.dns.types import TYPE_PTR, TYPE_TXT, ParseError, ResourceRecord, TXTRecord

from test_dns_protocol import PTR1, TXT1  # pylint: disable=import-error


@pytest.fixture
def loopback_socket():
    """UDP socket on the loopback interface standing in for the multicast group"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


@pytest.fixture
def sender():
    """socket that plays the part of a device on the network"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    yield sock
    sock.close()


def loopback_manager(sock):
    """manager that sends its query to the loopback socket instead of the group"""
    manager = DiscoveryManager()
    manager.group = "127.0.0.1"
    manager.port = sock.getsockname()[1]
    return manager


async def first_snapshot(manager):
    """wait for the first snapshot"""
    async with contextlib.aclosing(manager.devices()) as snapshots:
        async for snapshot in snapshots:
            return snapshot
    return None


def test_build_query():
    """test the bootstrap query asks for both services"""
    msg = DNSProtocol.parse(DiscoveryManager().build_query())

    assert msg.is_response is False
    assert [(question.name, question.type_, question.class_) for question in msg.questions] == [
        ("_raop._tcp.local.", TYPE_PTR, 1),
        ("_airplay._tcp.local.", TYPE_PTR, 1),
    ]


def test_config_values(bootstrap):
    """test settings are picked up from the config file"""
    config = bootstrap
    config.cparser.setValue("discovery/port", 5454)
    config.cparser.setValue("discovery/services", "_raop._tcp.local.")
    config.cparser.sync()

    manager = DiscoveryManager(config=config)

    assert manager.port == 5454
    assert manager.group == "224.0.0.251"
    assert manager.bufsize == 9000
    assert manager.services == ["_raop._tcp.local."]


def test_decode_datagram():
    """test unrelated messages are filtered out"""
    assert DiscoveryManager.decode_datagram(PTR1) is None
    assert DiscoveryManager.decode_datagram(TXT1).answers


def test_decode_datagram_malformed():
    """test malformed datagrams raise"""
    with pytest.raises(ParseError):
        DiscoveryManager.decode_datagram(b"\x00\x01")


@pytest.mark.asyncio
async def test_discovery_loopback(loopback_socket, sender):  # pylint: disable=redefined-outer-name
    """test an announcement flows through to a snapshot"""
    manager = loopback_manager(loopback_socket)
    await manager.start(sock=loopback_socket)
    try:
        # unrelated traffic first; only the announcement produces a snapshot
        sender.sendto(PTR1, loopback_socket.getsockname())
        sender.sendto(TXT1, loopback_socket.getsockname())
        snapshot = await asyncio.wait_for(first_snapshot(manager), timeout=5)
    finally:
        await manager.cleanup()

    assert len(snapshot) == 1
    assert snapshot[0].name == "0024369AC88C@Living Room"
    assert snapshot[0].ip == ipaddress.IPv4Address("192.168.1.120")
    assert snapshot[0].port == 5000
    assert manager.sock is None
    assert not manager.tasks


@pytest.mark.asyncio
async def test_discovery_malformed_is_fatal(loopback_socket, sender):  # pylint: disable=redefined-outer-name
    """test a malformed datagram ends discovery with the parse error"""
    manager = loopback_manager(loopback_socket)
    await manager.start(sock=loopback_socket)
    try:
        sender.sendto(b"\x00\x01\x02", loopback_socket.getsockname())
        with pytest.raises(ParseError):
            await asyncio.wait_for(first_snapshot(manager), timeout=5)
    finally:
        await manager.cleanup()


@pytest.mark.asyncio
async def test_start_twice(loopback_socket):  # pylint: disable=redefined-outer-name
    """test a running manager refuses to start again"""
    manager = loopback_manager(loopback_socket)
    await manager.start(sock=loopback_socket)
    try:
        with pytest.raises(RuntimeError):
            await manager.start(sock=loopback_socket)
    finally:
        await manager.cleanup()


@pytest.mark.asyncio
async def test_registry_waits_for_consumer():
    """test the registry task does not move on until its snapshot is taken"""
    manager = DiscoveryManager()
    task = asyncio.create_task(manager._registry_loop())
    msg = DNSProtocol.parse(TXT1)
    try:
        await manager.messages.put(msg)
        await manager.messages.put(msg)
        await asyncio.sleep(0.05)

        # first snapshot waiting, second message still queued
        assert manager.snapshots.qsize() == 1
        assert manager.messages.qsize() == 1

        manager.snapshots.get_nowait()
        manager.snapshots.task_done()
        await asyncio.sleep(0.05)

        assert manager.snapshots.qsize() == 1
        assert manager.messages.qsize() == 0
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_discovery_large_announcement(loopback_socket, sender):  # pylint: disable=redefined-outer-name
    """test an announcement bigger than a standard DNS buffer is read whole"""
    msg = DNSProtocol.parse(TXT1)
    msg.add_extra(
        ResourceRecord(
            name="padding.local.", type_=TYPE_TXT, rdata=TXTRecord(entries=[b"x" * 200] * 30)
        )
    )
    data = DNSProtocol.pack(msg)
    assert len(data) > 4096

    manager = loopback_manager(loopback_socket)
    await manager.start(sock=loopback_socket)
    try:
        sender.sendto(data, loopback_socket.getsockname())
        snapshot = await asyncio.wait_for(first_snapshot(manager), timeout=5)
    finally:
        await manager.cleanup()

    assert [device.name for device in snapshot] == ["0024369AC88C@Living Room"]


@pytest.mark.asyncio
async def test_start_send_failure_closes_socket(loopback_socket):  # pylint: disable=redefined-outer-name
    """test the socket is closed when the bootstrap query cannot be sent"""
    manager = loopback_manager(loopback_socket)
    loop = asyncio.get_running_loop()

    with unittest.mock.patch.object(
        loop, "sock_sendto", side_effect=OSError("Network is unreachable")
    ):
        with pytest.raises(OSError):
            await manager.start(sock=loopback_socket)

    assert manager.sock is None
    assert not manager.tasks
    assert loopback_socket.fileno() == -1


@pytest.mark.asyncio
async def test_discover_loopback(bootstrap, loopback_socket, sender):  # pylint: disable=redefined-outer-name
    """test the module level browser end to end"""
    config = bootstrap
    config.cparser.setValue("discovery/group", "127.0.0.1")
    config.cparser.setValue("discovery/port", loopback_socket.getsockname()[1])

    async def first(snapshots):
        async for snapshot in snapshots:
            return snapshot
        return None

    async with contextlib.aclosing(discover(config=config, sock=loopback_socket)) as snapshots:
        sender.sendto(TXT1, loopback_socket.getsockname())
        snapshot = await asyncio.wait_for(first(snapshots), timeout=5)

    assert snapshot[0].name == "0024369AC88C@Living Room"
    assert snapshot[0].port == 5000
    # browsing is over, so the socket has been released
    assert loopback_socket.fileno() == -1
