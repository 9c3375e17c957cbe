from __future__ import annotations

import os
from dataclasses import dataclass

from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash
from Cryptodome.Cipher import ChaCha20_Poly1305
from Cryptodome.PublicKey import RSA

from .constants import KEY_FILE_SUFFIX, MIN_RSA_KEY_BITS, RSA_KEY_BITS
from .errors import KeystoreError
from .tlv import _tlv, _varint_encode, group_fields, single, single_int


KEY_FILE_MAGIC = b"LABKEY\x00\x01"

NONCE_SIZE = 12
KEY_SIZE = 32
SALT_SIZE = 16

# Argon2id parameters for private key protection
ARGON_TIME_COST = 3
ARGON_MEMORY_COST_KIB = 64 * 1024  # 64 MiB
ARGON_PARALLELISM = 4


@dataclass
class KeyParams:
    salt: bytes
    time_cost: int = ARGON_TIME_COST
    memory_cost_kib: int = ARGON_MEMORY_COST_KIB
    parallelism: int = ARGON_PARALLELISM


def derive_key(password: str, params: KeyParams) -> bytes:
    return _argon_hash(
        password.encode("utf-8"),
        params.salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost_kib,
        parallelism=params.parallelism,
        hash_len=KEY_SIZE,
        type=_ArgonType.ID,
    )


def key_path(keys_dir: str, alias: str) -> str:
    if not alias or "/" in alias or "\\" in alias or alias in (".", ".."):
        raise KeystoreError(f"Invalid alias: {alias!r}")
    return os.path.join(keys_dir, alias + KEY_FILE_SUFFIX)


def has_key(keys_dir: str, alias: str) -> bool:
    return os.path.exists(key_path(keys_dir, alias))


def seal_private_key(key: RSA.RsaKey, alias: str, password: str, params: KeyParams | None = None) -> bytes:
    params = params or KeyParams(salt=os.urandom(SALT_SIZE))
    secret = derive_key(password, params)
    nonce = os.urandom(NONCE_SIZE)
    cipher = ChaCha20_Poly1305.new(key=secret, nonce=nonce)
    cipher.update(alias.encode("utf-8"))
    ciphertext, tag = cipher.encrypt_and_digest(key.export_key(format="DER", pkcs=8))
    out = bytearray(KEY_FILE_MAGIC)
    out += _tlv(1, params.salt)
    out += _tlv(2, _varint_encode(params.time_cost))
    out += _tlv(3, _varint_encode(params.memory_cost_kib))
    out += _tlv(4, _varint_encode(params.parallelism))
    out += _tlv(5, nonce)
    out += _tlv(6, ciphertext)
    out += _tlv(7, tag)
    return bytes(out)


def open_private_key(data: bytes, alias: str, password: str) -> RSA.RsaKey:
    if not data.startswith(KEY_FILE_MAGIC):
        raise KeystoreError("Bad key file magic")
    try:
        f = group_fields(data[len(KEY_FILE_MAGIC) :], (1, 2, 3, 4, 5, 6, 7))
        params = KeyParams(
            salt=single(f, 1),
            time_cost=single_int(f, 2),
            memory_cost_kib=single_int(f, 3),
            parallelism=single_int(f, 4),
        )
        nonce, ciphertext, tag = single(f, 5), single(f, 6), single(f, 7)
    except ValueError as e:
        raise KeystoreError(f"Malformed key file: {e}") from e
    secret = derive_key(password, params)
    cipher = ChaCha20_Poly1305.new(key=secret, nonce=nonce)
    cipher.update(alias.encode("utf-8"))
    try:
        der = cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError as e:
        raise KeystoreError("Could not decrypt private key; wrong password?") from e
    return RSA.import_key(der)


def create_key(keys_dir: str, alias: str, password: str, bits: int = RSA_KEY_BITS) -> RSA.RsaKey:
    """Generate an RSA key pair for ``alias`` and store it sealed under ``password``."""
    if bits < MIN_RSA_KEY_BITS:
        raise KeystoreError(f"RSA key size must be at least {MIN_RSA_KEY_BITS} bits, got {bits}")
    path = key_path(keys_dir, alias)
    if os.path.exists(path):
        raise KeystoreError(f"Key already exists for alias {alias!r}")
    key = RSA.generate(bits)
    os.makedirs(keys_dir, exist_ok=True)
    tmp = path + ".tmp"
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as wf:
        wf.write(seal_private_key(key, alias, password))
    os.replace(tmp, path)
    return key


def load_key(keys_dir: str, alias: str, password: str) -> RSA.RsaKey:
    path = key_path(keys_dir, alias)
    try:
        with open(path, "rb") as rf:
            data = rf.read()
    except FileNotFoundError as e:
        raise KeystoreError(f"No key for alias {alias!r}; run 'labchain init' first") from e
    return open_private_key(data, alias, password)


def public_key_bytes(key: RSA.RsaKey) -> bytes:
    return key.public_key().export_key(format="DER")
