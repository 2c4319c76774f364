#!/usr/bin/env python3
"""
AirPlay Device Registry

This module holds the set of known devices and the rules that fold DNS
answer and additional records into them.  PTR records announce devices;
SRV, TXT and A records, usually in the additional section of the same
packet, carry the connection details.
"""

import ipaddress
import logging

from airplay.dns.types import (
    TYPE_A,
    TYPE_PTR,
    TYPE_SRV,
    TYPE_TXT,
    ARecord,
    DNSMessage,
    PTRRecord,
    ResourceRecord,
    SRVRecord,
    TXTRecord,
)

from .types import SERVICE_LABELS, AirplayDevice


def is_routable(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """addresses another host on the network could actually reach"""
    return not (
        address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_unspecified
        or address.is_reserved
    )


def parse_txt_flags(record: TXTRecord) -> dict[str, str]:
    """turn key=value TXT entries into a mapping"""
    flags: dict[str, str] = {}
    for entry in record.entries:
        if not entry:
            continue
        key, _, value = entry.decode("utf-8", errors="replace").partition("=")
        flags[key] = value
    return flags


class DeviceRegistry:
    """Owns discovered devices; only the discovery engine should mutate it"""

    def __init__(self):
        self.devices: list[AirplayDevice] = []

    def get(self, name: str) -> AirplayDevice | None:
        """find a device by name"""
        return next((device for device in self.devices if device.name == name), None)

    def snapshot(self) -> list[AirplayDevice]:
        """copies of every device, safe to hand to consumers"""
        return [device.copy() for device in self.devices]

    @staticmethod
    def is_relevant(msg: DNSMessage) -> bool:
        """True if the answers announce any service we track"""
        return any(
            record.type_ == TYPE_PTR and record.first_label() in SERVICE_LABELS
            for record in msg.answers
        )

    def apply_message(self, msg: DNSMessage) -> None:
        """fold a whole message into the registry"""
        self._apply_pointers(msg.answers)

        records = msg.answers + msg.extras
        for device in self.devices:
            self.reconcile(device, records)

    def _apply_pointers(self, answers: list[ResourceRecord]) -> None:
        """create or retype devices named by PTR answers"""
        for record in answers:
            if record.type_ != TYPE_PTR or not isinstance(record.rdata, PTRRecord):
                continue

            labels = record.rdata.name.split(".")
            if len(labels) < 2:
                continue

            device_type = SERVICE_LABELS.get(labels[1])
            if not device_type:
                logging.debug("Ignoring PTR to unknown service %s", record.rdata.name)
                continue

            device = self.get(labels[0])
            if not device:
                device = AirplayDevice(name=labels[0])
                self.devices.append(device)
                logging.info("Discovered %s device: %s", device_type, device.name)
            device.type_ = device_type

    @staticmethod
    def _matches(device: AirplayDevice, record: ResourceRecord) -> bool:
        if record.first_label() == device.name:
            return True
        return bool(device.hostname) and record.name.casefold() == device.hostname.casefold()

    def reconcile(self, device: AirplayDevice, records: list[ResourceRecord]) -> int:
        """
        Apply every matching record to device until nothing moves

        An SRV record that moves the device to a hostname not yet seen in
        this reconciliation restarts the scan, since records earlier in the
        list may be keyed off the new hostname.  Hostnames are only
        restarted on once, which bounds the number of passes by the number
        of distinct SRV targets.  Returns the number of passes taken.
        """
        seen_hostnames = {device.hostname.casefold()} if device.hostname else set()
        passes = 0
        restart = True
        while restart:
            passes += 1
            restart = False
            for record in records:
                if not self._matches(device, record):
                    continue
                if self._apply_record(device, record):
                    hostname = device.hostname.casefold()
                    if hostname not in seen_hostnames:
                        seen_hostnames.add(hostname)
                        restart = True
                        break
        return passes

    @staticmethod
    def _apply_record(device: AirplayDevice, record: ResourceRecord) -> bool:
        """update device from a single record; True if the hostname changed"""
        rdata = record.rdata

        if record.type_ == TYPE_A and isinstance(rdata, ARecord):
            if is_routable(rdata.address):
                device.ip = rdata.address
            else:
                logging.debug("Ignoring unroutable address %s for %s", rdata.address, device.name)

        elif record.type_ == TYPE_TXT and isinstance(rdata, TXTRecord):
            device.flags = parse_txt_flags(rdata)

        elif record.type_ == TYPE_SRV and isinstance(rdata, SRVRecord):
            device.port = rdata.port
            if rdata.target != device.hostname:
                logging.debug(
                    "%s moved from hostname %r to %r", device.name, device.hostname, rdata.target
                )
                device.hostname = rdata.target
                return True

        return False

