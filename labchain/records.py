from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from Cryptodome.Hash import SHA512
from Cryptodome.PublicKey import RSA
from Cryptodome.Signature import pss

from .constants import SIGNATURE_RSA_PSS_SHA512
from .hashutil import sha512
from .tlv import _decode_str, _encode_str, _tlv, _varint_encode, group_fields, single, single_int


@dataclass(frozen=True)
class Record:
    timestamp: int
    creator: str
    payload: bytes
    signature: bytes = b""
    signature_algorithm: int = SIGNATURE_RSA_PSS_SHA512

    def encode(self) -> bytes:
        out = bytearray()
        out += _tlv(1, _varint_encode(self.timestamp))
        out += _tlv(2, _encode_str(self.creator))
        out += _tlv(3, self.payload)
        out += _tlv(4, _varint_encode(self.signature_algorithm))
        out += _tlv(5, self.signature)
        return bytes(out)

    @classmethod
    def decode(cls, data: bytes) -> "Record":
        f = group_fields(data, (1, 2, 3, 4, 5))
        return cls(
            timestamp=single_int(f, 1),
            creator=_decode_str(single(f, 2, b"")),
            payload=single(f, 3, b""),
            signature_algorithm=single_int(f, 4, SIGNATURE_RSA_PSS_SHA512),
            signature=single(f, 5, b""),
        )


@dataclass(frozen=True)
class BlockEntry:
    record_hash: bytes
    record: Record

    def encode(self) -> bytes:
        return _tlv(1, self.record_hash) + _tlv(2, self.record.encode())

    @classmethod
    def decode(cls, data: bytes) -> "BlockEntry":
        f = group_fields(data, (1, 2))
        return cls(record_hash=single(f, 1), record=Record.decode(single(f, 2)))


def sign_payload(key: RSA.RsaKey, payload: bytes) -> bytes:
    return pss.new(key).sign(SHA512.new(payload))


def verify_record(record: Record, public_key: RSA.RsaKey) -> bool:
    if record.signature_algorithm != SIGNATURE_RSA_PSS_SHA512:
        raise ValueError(f"Unsupported signature algorithm: {record.signature_algorithm}")
    try:
        pss.new(public_key).verify(SHA512.new(record.payload), record.signature)
    except (ValueError, TypeError):
        return False
    return True


def hash_record(record: Record) -> bytes:
    return sha512(record.encode())


def create_record(
    timestamp: int,
    alias: str,
    key: Optional[RSA.RsaKey],
    payload: bytes,
) -> Tuple[bytes, Record]:
    """Create a signed record and return ``(record_hash, record)``.

    Without a key the record is left unsigned.
    """
    signature = sign_payload(key, payload) if key is not None else b""
    record = Record(timestamp=timestamp, creator=alias, payload=payload, signature=signature)
    return hash_record(record), record
