#!/usr/bin/env python3
"""
DNS Wire Format Handler

This module handles parsing raw datagrams into DNSMessage objects and packing
DNSMessage objects back into datagrams.  Names may be compressed on the way
in; nothing is compressed on the way out.

Relevant RFCs:
http://www.ietf.org/rfc/rfc1035.txt - DNS
http://www.ietf.org/rfc/rfc2782.txt - SRV
http://www.ietf.org/rfc/rfc3596.txt - AAAA
"""

import ipaddress
import logging
import struct

from .types import (
    CACHE_CLEAR_BIT,
    FLAG_AA,
    FLAG_QR,
    FLAG_RA,
    FLAG_RD,
    FLAG_TC,
    FLAG_Z,
    HEADER_FORMAT,
    MAX_LABEL_LENGTH,
    MAX_NAME_LENGTH,
    MAX_POINTER_JUMPS,
    POINTER_MASK,
    RDATA_TYPES,
    TYPE_A,
    TYPE_AAAA,
    TYPE_PTR,
    TYPE_SRV,
    TYPE_TXT,
    AAAARecord,
    ARecord,
    DNSMessage,
    ParseError,
    PTRRecord,
    Question,
    Rdata,
    ResourceRecord,
    SRVRecord,
    TXTRecord,
    UnknownRecord,
    split_labels,
)


class DNSProtocol:
    """Handles DNS message parsing and formatting"""

    @staticmethod
    def _unpack(fmt: str, data: bytes, offset: int) -> tuple[tuple, int]:
        """Unpack a fixed size field, refusing to read past the end"""
        size = struct.calcsize(fmt)
        if len(data) < offset + size:
            raise ParseError(f"Insufficient data at offset {offset}: need {size} bytes")
        return struct.unpack_from(fmt, data, offset), offset + size

    @staticmethod
    def parse(data: bytes) -> DNSMessage:
        """Parse a datagram into a DNSMessage"""
        (
            msgid,
            flags1,
            flags2,
            qdcount,
            ancount,
            nscount,
            arcount,
        ), offset = DNSProtocol._unpack(HEADER_FORMAT, data, 0)

        msg = DNSMessage(
            id=msgid,
            is_response=bool(flags1 & FLAG_QR),
            opcode=(flags1 >> 3) & 0xF,
            is_authoritative=bool(flags1 & FLAG_AA),
            is_truncated=bool(flags1 & FLAG_TC),
            is_recursion_desired=bool(flags1 & FLAG_RD),
            is_recursion_available=bool(flags2 & FLAG_RA),
            is_zero=bool(flags2 & FLAG_Z),
            rcode=flags2 & 0xF,
        )

        for _ in range(qdcount):
            question, offset = DNSProtocol.parse_question(data, offset)
            msg.questions.append(question)

        for count, section in (
            (ancount, msg.answers),
            (nscount, msg.authorities),
            (arcount, msg.extras),
        ):
            for _ in range(count):
                record, offset = DNSProtocol.parse_record(data, offset)
                section.append(record)

        if offset != len(data):
            raise ParseError(f"Expected {len(data)} bytes, ended up with {offset}")

        return msg

    @staticmethod
    def parse_domain_name(data: bytes, offset: int, jumps: int = 0) -> tuple[str, int]:
        """
        Read a possibly compressed domain name starting at offset

        Returns the dotted name (with trailing dot) and the offset just past
        the name as it appears at the starting position.  Pointers are
        followed into the same buffer but do not move the returned offset
        beyond the two pointer bytes.
        """
        labels: list[str] = []
        while True:
            if offset >= len(data):
                raise ParseError(f"Domain name runs past end of buffer at offset {offset}")

            length = data[offset]
            if length & POINTER_MASK == POINTER_MASK:
                if jumps >= MAX_POINTER_JUMPS:
                    raise ParseError("Too many compression pointers, possible loop")
                (pointer,), offset = DNSProtocol._unpack("!H", data, offset)
                pointer &= 0x3FFF
                if pointer >= len(data):
                    raise ParseError(f"Compression pointer {pointer} outside of buffer")
                suffix, _ = DNSProtocol.parse_domain_name(data, pointer, jumps + 1)
                if suffix != ".":
                    labels.append(suffix.rstrip("."))
                break

            if length & POINTER_MASK:
                raise ParseError(f"Unsupported label type {length:#x} at offset {offset}")

            offset += 1
            if length == 0:
                break

            if len(data) < offset + length:
                raise ParseError(f"Label runs past end of buffer at offset {offset}")
            labels.append(data[offset : offset + length].decode("utf-8", errors="replace"))
            offset += length

        if not labels:
            return ".", offset
        return ".".join(labels) + ".", offset

    @staticmethod
    def parse_question(data: bytes, offset: int) -> tuple[Question, int]:
        """Parse an entry of the question section"""
        name, offset = DNSProtocol.parse_domain_name(data, offset)
        (type_, class_), offset = DNSProtocol._unpack("!HH", data, offset)
        return Question(name=name, type_=type_, class_=class_), offset

    @staticmethod
    def parse_record(data: bytes, offset: int) -> tuple[ResourceRecord, int]:
        """Parse a resource record"""
        name, offset = DNSProtocol.parse_domain_name(data, offset)
        (type_, class_, ttl, rdlength), offset = DNSProtocol._unpack("!HHIH", data, offset)

        end = offset + rdlength
        if len(data) < end:
            raise ParseError(f"RDATA of {name} runs past end of buffer")

        rdata = DNSProtocol.parse_rdata(data, offset, end, type_)
        return (
            ResourceRecord(
                name=name,
                type_=type_,
                class_=class_ & ~CACHE_CLEAR_BIT,
                cache_clear=bool(class_ & CACHE_CLEAR_BIT),
                ttl=ttl,
                rdata=rdata,
            ),
            end,
        )

    @staticmethod
    def parse_rdata(data: bytes, offset: int, end: int, type_: int) -> Rdata:
        """
        Decode the type specific payload occupying data[offset:end]

        Embedded names are read from the full buffer so compression pointers
        outside of the window still resolve.
        """
        length = end - offset

        if type_ == TYPE_A:
            if length != 4:
                raise ParseError(f"A record with {length} bytes of data")
            return ARecord(address=ipaddress.IPv4Address(bytes(data[offset:end])))

        if type_ == TYPE_AAAA:
            if length != 16:
                raise ParseError(f"AAAA record with {length} bytes of data")
            return AAAARecord(address=ipaddress.IPv6Address(bytes(data[offset:end])))

        if type_ == TYPE_PTR:
            name, consumed = DNSProtocol.parse_domain_name(data, offset)
            DNSProtocol._check_window(consumed, end)
            return PTRRecord(name=name)

        if type_ == TYPE_SRV:
            (priority, weight, port), offset = DNSProtocol._unpack("!HHH", data, offset)
            target, consumed = DNSProtocol.parse_domain_name(data, offset)
            DNSProtocol._check_window(consumed, end)
            return SRVRecord(priority=priority, weight=weight, port=port, target=target)

        if type_ == TYPE_TXT:
            entries = []
            while offset < end:
                strlen = data[offset]
                offset += 1
                DNSProtocol._check_window(offset + strlen, end)
                entries.append(data[offset : offset + strlen])
                offset += strlen
            return TXTRecord(entries=entries)

        return UnknownRecord(data=data[offset:end])

    @staticmethod
    def _check_window(offset: int, end: int) -> None:
        if offset > end:
            raise ParseError(f"RDATA overruns its declared length by {offset - end} bytes")

    @staticmethod
    def pack_domain_name(name: str) -> bytes:
        """Encode a dotted name as length-prefixed labels"""
        encoded = b""
        for label in split_labels(name):
            raw = label.encode("utf-8")
            if len(raw) > MAX_LABEL_LENGTH:
                raise ValueError(f"Label {label!r} is longer than {MAX_LABEL_LENGTH} bytes")
            encoded += struct.pack("!B", len(raw)) + raw
        encoded += b"\x00"
        if len(encoded) > MAX_NAME_LENGTH:
            raise ValueError(f"Name {name!r} is longer than {MAX_NAME_LENGTH} bytes")
        return encoded

    @staticmethod
    def pack_question(question: Question) -> bytes:
        """Encode a question entry"""
        return DNSProtocol.pack_domain_name(question.name) + struct.pack(
            "!HH", question.type_, question.class_
        )

    @staticmethod
    def pack_rdata(record: ResourceRecord) -> bytes:
        """Encode the payload of a record, checking it matches the type"""
        rdata = record.rdata
        expected = RDATA_TYPES.get(record.type_, UnknownRecord)
        if not isinstance(rdata, expected):
            raise ValueError(
                f"{type(rdata).__name__} payload does not match record type {record.type_}"
            )

        if isinstance(rdata, (ARecord, AAAARecord)):
            return rdata.address.packed
        if isinstance(rdata, PTRRecord):
            return DNSProtocol.pack_domain_name(rdata.name)
        if isinstance(rdata, SRVRecord):
            return struct.pack(
                "!HHH", rdata.priority, rdata.weight, rdata.port
            ) + DNSProtocol.pack_domain_name(rdata.target)
        if isinstance(rdata, TXTRecord):
            packed = b""
            for entry in rdata.entries:
                if len(entry) > 255:
                    raise ValueError("TXT entry is longer than 255 bytes")
                packed += struct.pack("!B", len(entry)) + entry
            return packed
        return rdata.data

    @staticmethod
    def pack_record(record: ResourceRecord) -> bytes:
        """Encode a resource record"""
        rdata = DNSProtocol.pack_rdata(record)
        class_ = record.class_ | CACHE_CLEAR_BIT if record.cache_clear else record.class_
        return (
            DNSProtocol.pack_domain_name(record.name)
            + struct.pack("!HHIH", record.type_, class_, record.ttl, len(rdata))
            + rdata
        )

    @staticmethod
    def pack(msg: DNSMessage) -> bytes:
        """Encode a DNSMessage; section counts always follow the section lengths"""
        flags1 = (msg.opcode & 0xF) << 3
        if msg.is_response:
            flags1 |= FLAG_QR
        if msg.is_authoritative:
            flags1 |= FLAG_AA
        if msg.is_truncated:
            flags1 |= FLAG_TC
        if msg.is_recursion_desired:
            flags1 |= FLAG_RD

        flags2 = msg.rcode & 0xF
        if msg.is_recursion_available:
            flags2 |= FLAG_RA
        if msg.is_zero:
            flags2 |= FLAG_Z

        packed = struct.pack(
            HEADER_FORMAT,
            msg.id,
            flags1,
            flags2,
            len(msg.questions),
            len(msg.answers),
            len(msg.authorities),
            len(msg.extras),
        )
        packed += b"".join(DNSProtocol.pack_question(question) for question in msg.questions)
        for section in (msg.answers, msg.authorities, msg.extras):
            packed += b"".join(DNSProtocol.pack_record(record) for record in section)

        logging.debug("Packed DNS message: %d bytes", len(packed))
        return packed

