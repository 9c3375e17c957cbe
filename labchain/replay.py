from __future__ import annotations

from typing import Any, Callable, Dict, TypeVar

from .chain import Block, Channel, iterate_chronologically
from .constants import ChainKind
from .delta import Delta
from .entry import PathEntry
from .errors import MalformedChainError
from .hashutil import encode_hash
from .records import Record


T = TypeVar("T")

# Payload decoder per chain kind; a new kind only needs an entry here.
DECODERS: Dict[ChainKind, Callable[[bytes], Any]] = {
    ChainKind.PATH: PathEntry.decode,
    ChainKind.FILE: Delta.decode,
}


def iterate(
    node,
    channel: Channel,
    decode: Callable[[bytes], T],
    callback: Callable[[bytes, Record, T], None],
) -> None:
    """Replay ``channel`` oldest-first, decoding every record payload.

    ``callback(record_hash, record, value)`` is called once per record. A payload
    that fails to decode raises :class:`MalformedChainError`; exceptions from the
    callback propagate and stop the walk.
    """

    def _visit(block_hash: bytes, block: Block) -> None:
        for entry in block.entries:
            try:
                value = decode(entry.record.payload)
            except ValueError as e:
                raise MalformedChainError(
                    f"{channel.name}: cannot decode record {encode_hash(entry.record_hash)}: {e}"
                ) from e
            callback(entry.record_hash, entry.record, value)

    iterate_chronologically(channel.name, channel.head, node.cache, node.network, _visit)


def iterate_channel(node, channel: Channel, callback: Callable[[bytes, Record, Any], None]) -> None:
    iterate(node, channel, DECODERS[ChainKind.of(channel.name)], callback)


def iterate_deltas(node, channel: Channel, callback: Callable[[bytes, Record, Delta], None]) -> None:
    iterate(node, channel, Delta.decode, callback)


def iterate_paths(node, channel: Channel, callback: Callable[[bytes, Record, PathEntry], None]) -> None:
    iterate(node, channel, PathEntry.decode, callback)
