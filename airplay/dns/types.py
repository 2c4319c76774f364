#!/usr/bin/env python3
"""
Shared data types and constants for the DNS wire format

This module contains the message, question and resource record classes,
the per-type RDATA variants, name tables used for dig-style output and
the exceptions raised by the codec.
"""

import ipaddress
from dataclasses import dataclass, field

# Header layout
HEADER_LENGTH = 12
HEADER_FORMAT = "!HBBHHHH"

# Header flag bits (first flags byte)
FLAG_QR = 0x80
FLAG_AA = 0x04
FLAG_TC = 0x02
FLAG_RD = 0x01

# Header flag bits (second flags byte)
FLAG_RA = 0x80
FLAG_Z = 0x40

# Name compression
POINTER_MASK = 0xC0
MAX_LABEL_LENGTH = 63
MAX_NAME_LENGTH = 255
MAX_POINTER_JUMPS = 64

# High bit of the class field on resource records
CACHE_CLEAR_BIT = 0x8000

# Record types
TYPE_A = 1
TYPE_PTR = 12
TYPE_TXT = 16
TYPE_AAAA = 28
TYPE_SRV = 33

CLASS_IN = 1

OPCODE_TO_STRING = {
    0: "QUERY",  # standard query
    1: "IQUERY",  # inverse query
    2: "STATUS",  # server status request
}

RCODE_TO_STRING = {
    0: "NOERROR",
    1: "FORMERR",
    2: "SERVFAIL",
    3: "NXDOMAIN",
    4: "NOTIMPL",
    5: "REFUSED",
}

CLASS_TO_STRING = {
    1: "IN",
    2: "CS",
    3: "CH",
    4: "HS",
    254: "NONE",
    255: "ANY",
}

TYPE_TO_STRING = {
    1: "A",
    2: "NS",
    3: "MD",
    4: "MF",
    5: "CNAME",
    6: "SOA",
    7: "MB",
    8: "MG",
    9: "MR",
    10: "NULL",
    11: "WKS",
    12: "PTR",
    13: "HINFO",
    14: "MINFO",
    15: "MX",
    16: "TXT",
    28: "AAAA",
    33: "SRV",
    41: "OPT",
    47: "NSEC",
    252: "AXFR",
    253: "MAILB",
    254: "MAILA",
    255: "ANY",
}


class DNSError(Exception):
    """Base exception for DNS codec errors"""


class ParseError(DNSError):
    """Raised when a buffer is not a well-formed DNS message"""


def class_string(class_: int) -> str:
    """human readable class"""
    return CLASS_TO_STRING.get(class_, f"UNKNOWN: {class_}")


def type_string(type_: int) -> str:
    """human readable record type"""
    return TYPE_TO_STRING.get(type_, f"UNKNOWN: {type_}")


@dataclass
class ARecord:
    """IPv4 address"""

    address: ipaddress.IPv4Address

    def __str__(self) -> str:
        return str(self.address)


@dataclass
class PTRRecord:
    """Pointer to another domain name"""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass
class TXTRecord:
    """Ordered key=value byte strings"""

    entries: list[bytes] = field(default_factory=list)

    def __str__(self) -> str:
        return " ".join(f'"{entry.decode("utf-8", errors="replace")}"' for entry in self.entries)


@dataclass
class AAAARecord:
    """IPv6 address"""

    address: ipaddress.IPv6Address

    def __str__(self) -> str:
        return str(self.address)


@dataclass
class SRVRecord:
    """Service locator"""

    priority: int
    weight: int
    port: int
    target: str

    def __str__(self) -> str:
        return f"{self.priority} {self.weight} {self.port} {self.target}"


@dataclass
class UnknownRecord:
    """Payload of a record type the codec does not decode"""

    data: bytes = b""

    def __str__(self) -> str:
        return f"\\# {len(self.data)} {self.data.hex()}"


Rdata = ARecord | PTRRecord | TXTRecord | AAAARecord | SRVRecord | UnknownRecord

# which variant belongs to which type code; anything else is UnknownRecord
RDATA_TYPES: dict[int, type] = {
    TYPE_A: ARecord,
    TYPE_PTR: PTRRecord,
    TYPE_TXT: TXTRecord,
    TYPE_AAAA: AAAARecord,
    TYPE_SRV: SRVRecord,
}


@dataclass
class Question:
    """An entry in the question section"""

    name: str
    type_: int
    class_: int = CLASS_IN

    def __str__(self) -> str:
        # prefix with ; (as in dig)
        name = self.name or "."
        return f";{name}\t{class_string(self.class_)}\t {type_string(self.type_)}"


@dataclass
class ResourceRecord:
    """An entry in the answer, authority or additional section"""

    name: str
    type_: int
    class_: int = CLASS_IN
    cache_clear: bool = False
    ttl: int = 0
    rdata: Rdata = field(default_factory=UnknownRecord)

    def first_label(self) -> str:
        """first label of the owner name"""
        return first_label(self.name)

    def __str__(self) -> str:
        name = self.name or "."
        text = f"{name}\t{self.ttl}\t{class_string(self.class_)}\t {type_string(self.type_)}"
        if not isinstance(self.rdata, UnknownRecord):
            text += f"\t{self.rdata}"
        return text


@dataclass
class DNSMessage:  # pylint: disable=too-many-instance-attributes
    """A full message, header included"""

    id: int = 0
    is_response: bool = False
    opcode: int = 0
    is_authoritative: bool = False
    is_truncated: bool = False
    is_recursion_desired: bool = False
    is_recursion_available: bool = False
    is_zero: bool = False
    rcode: int = 0

    questions: list[Question] = field(default_factory=list)
    answers: list[ResourceRecord] = field(default_factory=list)
    authorities: list[ResourceRecord] = field(default_factory=list)
    extras: list[ResourceRecord] = field(default_factory=list)

    def add_question(self, question: Question) -> None:
        """append to the question section"""
        self.questions.append(question)

    def add_answer(self, record: ResourceRecord) -> None:
        """append to the answer section"""
        self.answers.append(record)

    def add_authority(self, record: ResourceRecord) -> None:
        """append to the authority section"""
        self.authorities.append(record)

    def add_extra(self, record: ResourceRecord) -> None:
        """append to the additional section"""
        self.extras.append(record)

    def _flags_string(self) -> str:
        flags = [
            ("qr", self.is_response),
            ("aa", self.is_authoritative),
            ("tc", self.is_truncated),
            ("rd", self.is_recursion_desired),
            ("ra", self.is_recursion_available),
            ("z", self.is_zero),
        ]
        return "".join(f" {name}" for name, isset in flags if isset)

    def __str__(self) -> str:
        """dig-like rendering of the message"""
        lines = [
            f";; opcode: {OPCODE_TO_STRING.get(self.opcode, str(self.opcode))}, "
            f"status: {RCODE_TO_STRING.get(self.rcode, str(self.rcode))}, id: {self.id}",
            f";; flags:{self._flags_string()}; "
            f"QUERY: {len(self.questions)}, ANSWER: {len(self.answers)}, "
            f"AUTHORITY: {len(self.authorities)}, ADDITIONAL: {len(self.extras)}",
        ]

        sections = [
            ("QUESTION", self.questions),
            ("ANSWER", self.answers),
            ("AUTHORITY", self.authorities),
            ("ADDITIONAL", self.extras),
        ]
        for title, entries in sections:
            if entries:
                lines.append("")
                lines.append(f";; {title} SECTION:")
                lines.extend(str(entry) for entry in entries)

        return "\n".join(lines) + "\n"


def split_labels(name: str) -> list[str]:
    """split a dotted name into its labels, dropping the root"""
    return [label for label in name.split(".") if label]


def first_label(name: str) -> str:
    """first label of a dotted name"""
    return name.split(".", 1)[0]
