from __future__ import annotations

"""
Minimal TLV encoder/decoder for labchain payloads, records and blocks.

Encoding
- TLV: varint(tag) || varint(length) || payload
- Integers: unsigned LEB128 varint
- Bytes: raw payload (length provided by TLV len)
- Strings: UTF-8 bytes (length provided by TLV len)
- Repeated fields: the same tag appears once per element, in order

Encodings are canonical (fields are always written in ascending tag order), so
hashing an encoded record or block is deterministic.

Delta payload
- 1: offset (varint)
- 2: removed (bytes)
- 3: added (bytes)

PathEntry payload
- 1: segment (utf8) - repeats

Alias payload
- 1: alias (utf8)
- 2: public_key (bytes, DER SubjectPublicKeyInfo)

Record
- 1: timestamp (varint, nanoseconds)
- 2: creator (utf8)
- 3: payload (bytes)
- 4: signature_algorithm (varint)
- 5: signature (bytes)

Block entry (within block; tag=7)
- 1: record_hash (bytes[64])
- 2: record (container)

Block
- 1: timestamp (varint, nanoseconds)
- 2: channel_name (utf8)
- 3: length (varint)
- 4: previous (bytes[64], absent for the first block)
- 5: miner (utf8)
- 6: nonce (varint)
- 7: entry (container) - repeats
"""

from typing import Dict, List, Tuple


def _varint_encode(n: int) -> bytes:
    if n < 0:
        raise ValueError("varint: negative not supported")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            break
    return bytes(out)


def _varint_decode(data: bytes, pos: int) -> Tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if pos >= len(data):
            raise ValueError("varint: truncated")
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if not (b & 0x80):
            return result, pos
        shift += 7
        if shift > 63:
            raise ValueError("varint: too large")


def _tlv(tag: int, payload: bytes) -> bytes:
    return _varint_encode(tag) + _varint_encode(len(payload)) + payload


def _encode_str(s: str) -> bytes:
    return s.encode("utf-8")


def _decode_str(b: bytes) -> str:
    return b.decode("utf-8")


def _iter_tlvs(data: bytes) -> List[Tuple[int, bytes]]:
    items: List[Tuple[int, bytes]] = []
    pos = 0
    n = len(data)
    while pos < n:
        tag, pos = _varint_decode(data, pos)
        ln, pos = _varint_decode(data, pos)
        if pos + ln > n:
            raise ValueError("TLV length out of range")
        items.append((tag, data[pos : pos + ln]))
        pos += ln
    return items


def group_fields(data: bytes, known: Tuple[int, ...]) -> Dict[int, List[bytes]]:
    """Split ``data`` into ``{tag: [payload, ...]}`` for the ``known`` tags.

    Unknown tags are rejected so that arbitrary bytes are unlikely to decode as
    a valid message.
    """
    fields: Dict[int, List[bytes]] = {t: [] for t in known}
    for tag, payload in _iter_tlvs(data):
        if tag not in fields:
            raise ValueError(f"TLV: unexpected tag {tag}")
        fields[tag].append(payload)
    return fields


def single(fields: Dict[int, List[bytes]], tag: int, default: bytes | None = None) -> bytes:
    values = fields.get(tag) or []
    if len(values) > 1:
        raise ValueError(f"TLV: tag {tag} repeated")
    if not values:
        if default is None:
            raise ValueError(f"TLV: missing tag {tag}")
        return default
    return values[0]


def single_int(fields: Dict[int, List[bytes]], tag: int, default: int | None = None) -> int:
    values = fields.get(tag) or []
    if not values:
        if default is None:
            raise ValueError(f"TLV: missing tag {tag}")
        return default
    raw = single(fields, tag)
    value, pos = _varint_decode(raw, 0)
    if pos != len(raw):
        raise ValueError(f"TLV: trailing bytes in varint tag {tag}")
    return value


__all__ = [
    "_varint_encode",
    "_varint_decode",
    "_tlv",
    "_encode_str",
    "_decode_str",
    "_iter_tlvs",
    "group_fields",
    "single",
    "single_int",
]
