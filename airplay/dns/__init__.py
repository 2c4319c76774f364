#!/usr/bin/env python3
"""
DNS Wire Format Package

Just enough DNS message parsing and construction to handle the messages
relevant to AirPlay service discovery over multicast DNS.
"""

from .protocol import DNSProtocol
from .types import (
    AAAARecord,
    ARecord,
    DNSError,
    DNSMessage,
    ParseError,
    PTRRecord,
    Question,
    ResourceRecord,
    SRVRecord,
    TXTRecord,
    UnknownRecord,
)

__all__ = [
    "DNSProtocol",
    "AAAARecord",
    "ARecord",
    "DNSError",
    "DNSMessage",
    "ParseError",
    "PTRRecord",
    "Question",
    "ResourceRecord",
    "SRVRecord",
    "TXTRecord",
    "UnknownRecord",
]
