from __future__ import annotations

import base64
import hashlib
import secrets
import string


_ID_ALPHABET = string.ascii_letters + string.digits


def sha512(data: bytes) -> bytes:
    return hashlib.sha512(data).digest()


def encode_hash(h: bytes) -> str:
    """Unpadded URL-safe base64, used to turn hashes into channel names and file names."""
    return base64.urlsafe_b64encode(h).rstrip(b"=").decode("ascii")


def decode_hash(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)


def leading_zero_bits(h: bytes) -> int:
    bits = 0
    for b in h:
        if b == 0:
            bits += 8
            continue
        bits += 8 - b.bit_length()
        break
    return bits


def random_string(length: int) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))
