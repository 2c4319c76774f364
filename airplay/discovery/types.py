#!/usr/bin/env python3
"""
Shared data types and constants for AirPlay discovery

This module contains the discovered device class and the multicast DNS
constants used by the registry and the connection manager.
"""

import contextlib
import ipaddress
from dataclasses import dataclass, field

# Multicast DNS
MDNS_GROUP = "224.0.0.251"
MDNS_PORT = 5353
MDNS_BUFSIZE = 9000  # largest mDNS message, RFC 6762 section 17

SERVICE_RAOP = "_raop._tcp.local."
SERVICE_AIRPLAY = "_airplay._tcp.local."
DEFAULT_SERVICES = [SERVICE_RAOP, SERVICE_AIRPLAY]

DEVICE_TYPE_AIRPLAY = "airplay"
DEVICE_TYPE_REMOTE = "remote"

# service label -> device type
SERVICE_LABELS = {
    "_raop": DEVICE_TYPE_AIRPLAY,
    "_airplay": DEVICE_TYPE_AIRPLAY,
    "_touch-remote": DEVICE_TYPE_REMOTE,
}


@dataclass
class AirplayDevice:  # pylint: disable=too-many-public-methods
    """Information about a discovered AirPlay or remote device"""

    name: str
    type_: str = ""
    hostname: str = ""
    ip: ipaddress.IPv4Address | None = None
    port: int = 0
    flags: dict[str, str] = field(default_factory=dict)

    def copy(self) -> "AirplayDevice":
        """copy that does not share the flags mapping"""
        return AirplayDevice(
            name=self.name,
            type_=self.type_,
            hostname=self.hostname,
            ip=self.ip,
            port=self.port,
            flags=dict(self.flags),
        )

    def _int_flag(self, key: str) -> int:
        with contextlib.suppress(KeyError, ValueError):
            return int(self.flags[key])
        return 0

    def _int_list_flag(self, key: str) -> list[int]:
        values = []
        for entry in self.flags.get(key, "").split(","):
            try:
                values.append(int(entry))
            except ValueError:
                values.append(-1)
        return values

    def audio_channels(self) -> int:
        """number of audio channels (ch)"""
        return self._int_flag("ch")

    def audio_codecs(self) -> list[int]:
        """supported audio codecs (cn)"""
        return self._int_list_flag("cn")

    def encryption_types(self) -> list[int]:
        """supported encryption types (et)"""
        return self._int_list_flag("et")

    def metadata_types(self) -> list[int]:
        """supported metadata types (md)"""
        return self._int_list_flag("md")

    def sample_rate(self) -> int:
        """audio sample rate (sr)"""
        return self._int_flag("sr")

    def sample_size(self) -> int:
        """audio sample size (ss)"""
        return self._int_flag("ss")

    def password_required(self) -> bool:
        """pw flag"""
        return self.flags.get("pw") == "true"

    def transports(self) -> list[str]:
        """supported transports (tp)"""
        if not self.flags.get("tp"):
            return []
        return self.flags["tp"].split(",")

    def server_version(self) -> str:
        """vs flag"""
        return self.flags.get("vs", "")

    def model(self) -> str:
        """am flag"""
        return self.flags.get("am", "")

    def device_name(self) -> str:
        """DvNm flag of a remote"""
        return self.flags.get("DvNm", "")

    def device_type(self) -> str:
        """DvTy flag of a remote"""
        return self.flags.get("DvTy", "")

    def remote_name(self) -> str:
        """RemN flag of a remote"""
        return self.flags.get("RemN", "")

    def remote_version(self) -> str:
        """RemV flag of a remote"""
        return self.flags.get("RemV", "")

    def pairing_code(self) -> str:
        """Pair flag of a remote"""
        return self.flags.get("Pair", "")

    def __str__(self) -> str:
        lines = [
            f"{self.name} ({self.type_ or 'unknown'})",
            f"  Hostname: {self.hostname}",
            f"  Address: {self.ip or ''}:{self.port}",
        ]
        lines.extend(f"  {key}: {value}" for key, value in sorted(self.flags.items()))
        return "\n".join(lines)
