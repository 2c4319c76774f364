#!/usr/bin/env python3
"""
AirPlay control channel

RTSP/HTTP requests to a device with Digest authentication.
"""

from .client import AirplaySession, digest_response
from .types import (
    AirplayError,
    AuthState,
    AuthUnsupportedError,
    InvalidOptionsError,
    NoOptionsError,
    PasswordInvalidError,
    PasswordRequiredError,
    Response,
)

__all__ = [
    "AirplayError",
    "AirplaySession",
    "AuthState",
    "AuthUnsupportedError",
    "InvalidOptionsError",
    "NoOptionsError",
    "PasswordInvalidError",
    "PasswordRequiredError",
    "Response",
    "digest_response",
]
