"""Delta value type, sequential chunker and patch engine.

A Delta reads "at byte ``offset``, delete ``len(removed)`` bytes, insert
``added``". Deltas of one content chain are only meaningful when replayed in
chain order against a buffer that already reflects every earlier delta.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import BinaryIO, Callable

from .errors import DeltaApplyError
from .tlv import _tlv, _varint_encode, group_fields, single, single_int


@dataclass(frozen=True)
class Delta:
    offset: int = 0
    removed: bytes = b""
    added: bytes = b""

    @property
    def removed_length(self) -> int:
        return len(self.removed)

    def encode(self) -> bytes:
        out = bytearray()
        out += _tlv(1, _varint_encode(self.offset))
        out += _tlv(2, self.removed)
        out += _tlv(3, self.added)
        return bytes(out)

    @classmethod
    def decode(cls, data: bytes) -> "Delta":
        f = group_fields(data, (1, 2, 3))
        return cls(
            offset=single_int(f, 1, 0),
            removed=single(f, 2, b""),
            added=single(f, 3, b""),
        )


def stream_to_deltas(
    reader: BinaryIO,
    max_chunk_size: int,
    callback: Callable[[Delta], None],
) -> None:
    """Emit one append-only Delta per chunk read from ``reader``.

    Chunks hold at most ``max_chunk_size`` bytes; offsets are the number of
    bytes already consumed. Exceptions from ``reader`` or ``callback`` propagate.
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")
    offset = 0
    while True:
        chunk = reader.read(max_chunk_size)
        if not chunk:
            break
        callback(Delta(offset=offset, added=bytes(chunk)))
        offset += len(chunk)


def path_to_deltas(path: str, max_chunk_size: int, callback: Callable[[Delta], None]) -> None:
    with open(path, "rb") as rf:
        stream_to_deltas(rf, max_chunk_size, callback)


def apply_to_buffer(delta: Delta, buffer: bytes) -> bytes:
    length = len(buffer)
    head_end = min(delta.offset, length)
    tail_start = min(delta.offset + delta.removed_length, length)
    return bytes(buffer[:head_end]) + delta.added + bytes(buffer[tail_start:])


def apply_to_path(delta: Delta, path: str) -> None:
    """Patch ``path`` in place with ``delta``, creating the file if needed.

    The tail after the removed range is buffered, the addition and tail are
    written back, and the file is truncated last.
    """
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o666)
    with os.fdopen(fd, "r+b") as fh:
        size = os.fstat(fh.fileno()).st_size
        tail_offset = delta.offset + delta.removed_length
        remaining = max(0, size - tail_offset)
        tail = b""
        if remaining:
            fh.seek(tail_offset)
            tail = fh.read(remaining)
            if len(tail) != remaining:
                raise DeltaApplyError(
                    f"Could not read remaining; expected '{remaining}', got '{len(tail)}'"
                )
        fh.seek(delta.offset)
        count = fh.write(delta.added)
        if count != len(delta.added):
            raise DeltaApplyError(
                f"Could not write addition; expected '{len(delta.added)}', got '{count}'"
            )
        count = fh.write(tail)
        if count != remaining:
            raise DeltaApplyError(f"Could not write remaining; expected '{remaining}', got '{count}'")
        fh.flush()
        fh.truncate(delta.offset + len(delta.added) + remaining)
