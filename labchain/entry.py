from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .pathutil import to_segments
from .tlv import _decode_str, _encode_str, _tlv, group_fields


@dataclass(frozen=True)
class PathEntry:
    """Relative location of one archived file, as ordered path segments."""

    segments: Tuple[str, ...]

    @classmethod
    def from_path(cls, p: str) -> "PathEntry":
        return cls(segments=tuple(to_segments(p)))

    def as_posix(self) -> str:
        return "/".join(self.segments)

    def encode(self) -> bytes:
        return b"".join(_tlv(1, _encode_str(s)) for s in self.segments)

    @classmethod
    def decode(cls, data: bytes) -> "PathEntry":
        f = group_fields(data, (1,))
        return cls(segments=tuple(_decode_str(s) for s in f[1]))
