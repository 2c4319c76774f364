#!/usr/bin/env python3
"""
DAAP tag/length/value decoding

Each entry is a four byte tag, a four byte big-endian length and the
payload.  Container tags hold further entries; everything else is kept as
raw bytes.
"""

import struct

ENTRY_HEADER = struct.Struct("!4sI")

CONTAINER_TAGS = frozenset(
    {
        "cmst",
        "mlog",
        "agal",
        "mlcl",
        "mshl",
        "mlit",
        "abro",
        "abar",
        "apso",
        "caci",
        "avdb",
        "cmgt",
        "aply",
        "adbs",
        "cmpa",
    }
)

DAAPValue = bytes | dict[str, "DAAPValue"]


class DAAPError(ValueError):
    """Malformed DAAP buffer"""


def daap_parse(data: bytes) -> dict[str, DAAPValue]:
    """Decode consecutive entries into a tag mapping; a repeated tag keeps the last value"""
    tags: dict[str, DAAPValue] = {}
    offset = 0
    while offset < len(data):
        if offset + ENTRY_HEADER.size > len(data):
            raise DAAPError(f"Truncated DAAP entry header at offset {offset}")
        rawtag, size = ENTRY_HEADER.unpack_from(data, offset)
        offset += ENTRY_HEADER.size
        if offset + size > len(data):
            raise DAAPError(f"DAAP entry {rawtag!r} runs past the buffer")

        tag = rawtag.decode("latin-1")
        payload = data[offset : offset + size]
        tags[tag] = daap_parse(payload) if tag in CONTAINER_TAGS else payload
        offset += size
    return tags


def _leaf_text(value: bytes) -> str:
    """printable text as is, anything else as hex"""
    try:
        text = value.decode("utf-8")
    except UnicodeDecodeError:
        return value.hex().upper()
    return text if text.isprintable() else value.hex().upper()


def daap_format(tags: dict[str, DAAPValue], indent: str = "") -> str:
    """Readable dump, one tab per nesting level"""
    out = ""
    for tag, value in tags.items():
        if isinstance(value, dict):
            out += f"{indent}{tag}:\n"
            out += daap_format(value, indent + "\t")
        else:
            out += f"{indent}{tag}: {_leaf_text(value)}\n"
    return out
