#!/usr/bin/env python3
"""
Shared data types and exceptions for the AirPlay control channel
"""

from dataclasses import dataclass, field
from enum import Enum

RTSP_PROTOCOL = "RTSP/1.0"
HTTP_PROTOCOL = "HTTP/1.1"

DEFAULT_TIMEOUT = 10.0

# digest username to use for each realm a device may announce
REALM_USERNAMES = {
    "raop": "iTunes",
    "Airplay": "Airplay",
}


class AirplayError(Exception):
    """Base exception for control channel errors"""


class PasswordRequiredError(AirplayError):
    """Device asked for a password and none was configured"""


class PasswordInvalidError(AirplayError):
    """Device rejected the password"""


class AuthUnsupportedError(AirplayError):
    """Challenge was missing or not Digest"""


class NoOptionsError(AirplayError):
    """Device did not answer the OPTIONS request"""


class InvalidOptionsError(AirplayError):
    """Device answered OPTIONS without ANNOUNCE support"""


class AuthState(Enum):
    """Where a request stands in the digest handshake"""

    NO_CHALLENGE = "no-challenge"  # nothing cached, sent without credentials
    CHALLENGED = "challenged"  # sent with credentials from an earlier challenge
    RETRIED = "retried"  # the single retry after a fresh challenge


@dataclass
class Response:
    """Status line, headers and body of an RTSP or HTTP response"""

    proto: str
    status_code: int
    reason: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def status(self) -> str:
        """code and reason phrase"""
        return f"{self.status_code} {self.reason}".strip()

    def header(self, name: str, default: str = "") -> str:
        """case insensitive header lookup"""
        return self.headers.get(name.lower(), default)
