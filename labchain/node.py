from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from Cryptodome.PublicKey import RSA

from . import keystore
from .cache import FileCache
from .chain import Block, Channel, MiningListener, iterate_chronologically, mine
from .config import LabConfig
from .constants import ALIAS_CHANNEL, RSA_KEY_BITS
from .errors import BlockNotFoundError, ChannelError, LabError
from .logging_config import get_logger
from .network import DirectoryNetwork
from .records import BlockEntry, create_record
from .tlv import _decode_str, _encode_str, _tlv, group_fields, single


log = get_logger(__name__)


@dataclass(frozen=True)
class AliasEntry:
    alias: str
    public_key: bytes

    def encode(self) -> bytes:
        return _tlv(1, _encode_str(self.alias)) + _tlv(2, self.public_key)

    @classmethod
    def decode(cls, data: bytes) -> "AliasEntry":
        f = group_fields(data, (1, 2))
        return cls(alias=_decode_str(single(f, 1)), public_key=single(f, 2))


class Node:
    """Explicit context for every chain operation.

    Holds the identity (alias and key), the local cache, the optional peer
    network and a registry of open channels keyed by name. Use as a context
    manager, or call :meth:`close` when done, to push open channels to peers.
    """

    def __init__(
        self,
        alias: str,
        key: Optional[RSA.RsaKey],
        cache,
        network: Optional[DirectoryNetwork] = None,
    ):
        self.alias = alias
        self.key = key
        self.cache = cache
        self.network = network
        self.channels: Dict[str, Channel] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        return f"Node(alias={self.alias!r}, cache={self.cache!r}, network={self.network!r})"

    def add_channel(self, channel: Channel) -> None:
        self.channels[channel.name] = channel

    def get_channel(self, name: str) -> Channel:
        try:
            return self.channels[name]
        except KeyError:
            raise ChannelError(f"No such channel: {name}") from None

    def load_channel(self, channel: Channel) -> Channel:
        """Best-effort refresh of ``channel`` from cache and network, then register it."""
        try:
            channel.load_cached_head(self.cache)
        except (ChannelError, BlockNotFoundError) as e:
            log.warning("channel_load_failed", channel=channel.name, error=str(e))
        if self.network is not None:
            try:
                channel.pull(self.cache, self.network)
            except (LabError, OSError) as e:
                log.warning("channel_pull_failed", channel=channel.name, error=str(e))
        self.add_channel(channel)
        return channel

    def mine(self, channel: Channel, threshold: int, listener: Optional[MiningListener] = None) -> Tuple[bytes, Block]:
        block_hash, block = mine(channel, self.cache, self.network, self.alias, threshold, listener)
        log.debug("block_mined", channel=channel.name, length=block.length, entries=len(block.entries))
        return block_hash, block

    def write(self, listener: Optional[MiningListener], channel: Channel, payload: bytes) -> bytes:
        """Sign ``payload`` into a record, mine it onto ``channel`` and push it.

        Returns the record hash.
        """
        record_hash, record = create_record(time.time_ns(), self.alias, self.key, payload)
        self.cache.put_block_entry(channel.name, BlockEntry(record_hash=record_hash, record=record))
        self.mine(channel, channel.threshold, listener)
        if self.network is not None:
            channel.push(self.cache, self.network)
        return record_hash

    def flush(self) -> None:
        if self.network is None:
            return
        for channel in self.channels.values():
            if channel.head is not None:
                channel.push(self.cache, self.network)

    def close(self) -> None:
        self.flush()
        self.channels.clear()


def open_alias_channel(threshold: int) -> Channel:
    return Channel(ALIAS_CHANNEL, threshold)


def lookup_alias(node: Node, alias: str) -> Optional[RSA.RsaKey]:
    """Return the public key registered for ``alias``, or None."""
    try:
        channel = node.get_channel(ALIAS_CHANNEL)
    except ChannelError:
        channel = node.load_channel(open_alias_channel(0))
    found: Dict[str, bytes] = {}

    def _visit(block_hash, block):
        for entry in block.entries:
            try:
                a = AliasEntry.decode(entry.record.payload)
            except ValueError:
                continue
            if a.alias == entry.record.creator:
                found.setdefault(a.alias, a.public_key)

    iterate_chronologically(channel.name, channel.head, node.cache, node.network, _visit)
    if alias not in found:
        return None
    return RSA.import_key(found[alias])


def register_alias(node: Node, threshold: int, listener: Optional[MiningListener] = None) -> bool:
    """Write an alias registration for the node's key unless one already exists."""
    if node.key is None:
        raise LabError("Cannot register an alias without a key")
    existing = lookup_alias(node, node.alias)
    if existing is not None:
        if existing.public_key() != node.key.public_key():
            raise LabError(f"Alias {node.alias!r} is registered to a different key")
        return False
    channel = node.get_channel(ALIAS_CHANNEL)
    channel.threshold = threshold
    entry = AliasEntry(alias=node.alias, public_key=keystore.public_key_bytes(node.key))
    node.write(listener, channel, entry.encode())
    log.info("alias_registered", alias=node.alias)
    return True


def get_node(config: LabConfig, password: str) -> Node:
    key = keystore.load_key(str(config.keys_dir), config.alias, password)
    cache = FileCache(str(config.cache_dir))
    network = DirectoryNetwork(config.peers) if config.peers else None
    return Node(config.alias, key, cache, network)


def init_node(
    config: LabConfig,
    password: str,
    listener: Optional[MiningListener] = None,
    bits: int = RSA_KEY_BITS,
) -> Node:
    """Create the key pair if needed, then register the alias."""
    if not keystore.has_key(str(config.keys_dir), config.alias):
        keystore.create_key(str(config.keys_dir), config.alias, password, bits=bits)
        log.info("key_created", alias=config.alias, bits=bits)
    node = get_node(config, password)
    register_alias(node, config.threshold, listener)
    return node
