from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, TextIO, Tuple

from .constants import HASH_SIZE
from .errors import BlockNotFoundError, ChainValidationError, ChannelError, NoEntriesToMineError
from .hashutil import encode_hash, leading_zero_bits, sha512
from .records import BlockEntry
from .tlv import _decode_str, _encode_str, _tlv, _varint_encode, group_fields, single, single_int


@dataclass(frozen=True)
class Block:
    timestamp: int
    channel_name: str
    length: int
    previous: bytes = b""
    miner: str = ""
    nonce: int = 0
    entries: Tuple[BlockEntry, ...] = field(default_factory=tuple)

    def encode(self) -> bytes:
        out = bytearray()
        out += _tlv(1, _varint_encode(self.timestamp))
        out += _tlv(2, _encode_str(self.channel_name))
        out += _tlv(3, _varint_encode(self.length))
        if self.previous:
            out += _tlv(4, self.previous)
        out += _tlv(5, _encode_str(self.miner))
        out += _tlv(6, _varint_encode(self.nonce))
        for e in self.entries:
            out += _tlv(7, e.encode())
        return bytes(out)

    @classmethod
    def decode(cls, data: bytes) -> "Block":
        f = group_fields(data, (1, 2, 3, 4, 5, 6, 7))
        return cls(
            timestamp=single_int(f, 1),
            channel_name=_decode_str(single(f, 2)),
            length=single_int(f, 3),
            previous=single(f, 4, b""),
            miner=_decode_str(single(f, 5, b"")),
            nonce=single_int(f, 6, 0),
            entries=tuple(BlockEntry.decode(e) for e in f[7]),
        )

    def hash(self) -> bytes:
        return sha512(self.encode())


class MiningListener:
    """Receives mining progress; the default implementation ignores it."""

    def on_mining_started(self, channel: "Channel", size: int) -> None:
        pass

    def on_new_max_bits(self, channel: "Channel", block_hash: bytes, nonce: int, bits: int) -> None:
        pass

    def on_mining_threshold_reached(self, channel: "Channel", block_hash: bytes, nonce: int) -> None:
        pass


class PrintingMiningListener(MiningListener):
    def __init__(self, output: TextIO | None = None):
        self.output = output if output is not None else sys.stdout

    def on_mining_started(self, channel, size):
        print(f" mining {channel.name}: {size} bytes", file=self.output)

    def on_new_max_bits(self, channel, block_hash, nonce, bits):
        print(f"   nonce {nonce}: {bits}/{channel.threshold} bits", file=self.output)

    def on_mining_threshold_reached(self, channel, block_hash, nonce):
        print(f"   mined {encode_hash(block_hash)}", file=self.output, flush=True)


def get_block(block_hash: bytes, cache, network=None) -> Block:
    """Look ``block_hash`` up in ``cache``, falling back to ``network``.

    Blocks fetched from the network are written to the cache.
    """
    block = cache.get_block(block_hash)
    if block is not None:
        return block
    if network is not None:
        block = network.get_block(block_hash)
        if block is not None:
            if block.hash() != block_hash:
                raise ChainValidationError(f"Block hash mismatch for {encode_hash(block_hash)}")
            cache.put_block(block_hash, block)
            return block
    raise BlockNotFoundError(f"Block not found: {encode_hash(block_hash)}")


def iterate_backwards(
    name: str,
    head: Optional[bytes],
    cache,
    network,
    visit: Callable[[bytes, Block], None],
) -> None:
    block_hash = head
    while block_hash:
        block = get_block(block_hash, cache, network)
        visit(block_hash, block)
        block_hash = block.previous


def iterate_chronologically(
    name: str,
    head: Optional[bytes],
    cache,
    network,
    visit: Callable[[bytes, Block], None],
) -> None:
    """Visit every block of the chain ``name``, oldest first."""
    hashes: List[bytes] = []
    iterate_backwards(name, head, cache, network, lambda h, b: hashes.append(h))
    for block_hash in reversed(hashes):
        visit(block_hash, get_block(block_hash, cache, network))


class Channel:
    """A named, hash-linked chain of blocks gated by a proof-of-work threshold."""

    def __init__(self, name: str, threshold: int):
        self.name = name
        self.threshold = threshold
        self.head: Optional[bytes] = None
        self.timestamp: int = 0

    def __repr__(self) -> str:
        head = encode_hash(self.head) if self.head else None
        return f"Channel(name={self.name!r}, threshold={self.threshold}, head={head!r})"

    def set_head(self, head: bytes, block: Block) -> None:
        self.head = head
        self.timestamp = block.timestamp

    def validate(self, cache, network, head: bytes, block: Block) -> None:
        """Check hashes, lengths and threshold from ``head`` back to the current head.

        A chain that never meets the current head is checked down to its first
        block, so a longer fork can still replace a shorter one.
        """
        if cache.get_block(head) is None:
            cache.put_block(head, block)
        expected_length = block.length
        block_hash = head
        while block_hash and block_hash != self.head:
            b = get_block(block_hash, cache, network)
            if b.hash() != block_hash:
                raise ChainValidationError(f"{self.name}: hash mismatch at length {b.length}")
            if b.channel_name != self.name:
                raise ChainValidationError(f"{self.name}: block belongs to {b.channel_name}")
            if b.length != expected_length:
                raise ChainValidationError(f"{self.name}: expected length {expected_length}, got {b.length}")
            if leading_zero_bits(block_hash) < self.threshold:
                raise ChainValidationError(f"{self.name}: block below threshold {self.threshold}")
            if b.previous and len(b.previous) != HASH_SIZE:
                raise ChainValidationError(f"{self.name}: malformed previous hash")
            if not b.previous and b.length != 1:
                raise ChainValidationError(f"{self.name}: chain ends at length {b.length}")
            expected_length -= 1
            block_hash = b.previous

    def update(self, cache, network, head: bytes, block: Block) -> None:
        """Validate ``block`` and make it the head of this channel."""
        if self.head == head:
            return
        if self.head is not None:
            current = get_block(self.head, cache, network)
            if block.length <= current.length:
                raise ChainValidationError(
                    f"{self.name}: chain too short to replace current head ({block.length} <= {current.length})"
                )
        self.validate(cache, network, head, block)
        self.set_head(head, block)
        cache.put_head(self.name, head)

    def load_cached_head(self, cache) -> None:
        head = cache.get_head(self.name)
        if head is None:
            raise ChannelError(f"{self.name}: no cached head")
        block = cache.get_block(head)
        if block is None:
            raise BlockNotFoundError(f"{self.name}: cached head block missing")
        self.set_head(head, block)

    def pull(self, cache, network) -> None:
        head = network.get_head(self.name)
        if head is None:
            raise ChannelError(f"{self.name}: no head on network")
        if head == self.head:
            return
        block = get_block(head, cache, network)
        self.update(cache, network, head, block)

    def push(self, cache, network) -> None:
        if self.head is None:
            raise ChannelError(f"{self.name}: nothing to push")
        network.broadcast(self, cache, self.head, get_block(self.head, cache, network))


def mine(
    channel: Channel,
    cache,
    network,
    miner: str,
    threshold: int,
    listener: Optional[MiningListener] = None,
) -> Tuple[bytes, Block]:
    """Seal every staged entry of ``channel`` into a new block and commit it."""
    listener = listener or MiningListener()
    entries = cache.get_block_entries(channel.name)
    if not entries:
        raise NoEntriesToMineError(f"{channel.name}: no entries to mine")
    length = 1
    if channel.head is not None:
        length = get_block(channel.head, cache, network).length + 1
    template = Block(
        timestamp=time.time_ns(),
        channel_name=channel.name,
        length=length,
        previous=channel.head or b"",
        miner=miner,
        entries=tuple(entries),
    )
    listener.on_mining_started(channel, len(template.encode()))
    best = -1
    nonce = 0
    while True:
        nonce += 1
        block = replace(template, nonce=nonce)
        block_hash = block.hash()
        bits = leading_zero_bits(block_hash)
        if bits > best:
            best = bits
            listener.on_new_max_bits(channel, block_hash, nonce, bits)
        if bits >= threshold:
            listener.on_mining_threshold_reached(channel, block_hash, nonce)
            break
    cache.put_block(block_hash, block)
    channel.update(cache, network, block_hash, block)
    cache.remove_block_entries(channel.name, [e.record_hash for e in entries])
    return block_hash, block
