#!/usr/bin/env python3
"""
AirPlay Discovery Package

Multicast DNS browsing for AirPlay speakers and iTunes remotes, split into
the device registry and the connection manager that feeds it.
"""

from .connection import DiscoveryManager, create_multicast_socket, discover
from .registry import DeviceRegistry
from .types import AirplayDevice

__all__ = [
    "AirplayDevice",
    "DeviceRegistry",
    "DiscoveryManager",
    "create_multicast_socket",
    "discover",
]
