from __future__ import annotations

import os
from typing import Dict, Iterable, List, Optional

from .chain import Block
from .hashutil import encode_hash
from .records import BlockEntry


class MemoryCache:
    """Cache holding heads, blocks and staged entries in process memory."""

    def __init__(self) -> None:
        self.heads: Dict[str, bytes] = {}
        self.blocks: Dict[bytes, Block] = {}
        self.entries: Dict[str, Dict[bytes, BlockEntry]] = {}

    def get_head(self, channel: str) -> Optional[bytes]:
        return self.heads.get(channel)

    def put_head(self, channel: str, head: bytes) -> None:
        self.heads[channel] = head

    def get_block(self, block_hash: bytes) -> Optional[Block]:
        return self.blocks.get(block_hash)

    def put_block(self, block_hash: bytes, block: Block) -> None:
        self.blocks[block_hash] = block

    def get_block_entries(self, channel: str) -> List[BlockEntry]:
        staged = list(self.entries.get(channel, {}).values())
        staged.sort(key=lambda e: e.record.timestamp)
        return staged

    def put_block_entry(self, channel: str, entry: BlockEntry) -> None:
        self.entries.setdefault(channel, {})[entry.record_hash] = entry

    def remove_block_entries(self, channel: str, record_hashes: Iterable[bytes]) -> None:
        staged = self.entries.get(channel, {})
        for h in record_hashes:
            staged.pop(h, None)


class FileCache:
    """Directory-backed cache.

    Layout under ``root``:
    - ``block/<hash>``: encoded blocks
    - ``channel/<name>``: raw head hash per channel
    - ``entry/<name>/<record hash>``: staged, not yet mined, entries

    Hashes and channel names are stored as unpadded URL-safe base64.
    """

    def __init__(self, root: str):
        self.root = root
        self.block_dir = os.path.join(root, "block")
        self.channel_dir = os.path.join(root, "channel")
        self.entry_dir = os.path.join(root, "entry")
        for d in (self.block_dir, self.channel_dir, self.entry_dir):
            os.makedirs(d, exist_ok=True)

    def __repr__(self) -> str:
        return f"FileCache({self.root!r})"

    @staticmethod
    def _write_atomic(path: str, data: bytes) -> None:
        tmp = path + ".tmp"
        with open(tmp, "wb") as wf:
            wf.write(data)
        os.replace(tmp, path)

    @staticmethod
    def _read(path: str) -> Optional[bytes]:
        try:
            with open(path, "rb") as rf:
                return rf.read()
        except FileNotFoundError:
            return None

    def _channel_key(self, channel: str) -> str:
        return encode_hash(channel.encode("utf-8"))

    def get_head(self, channel: str) -> Optional[bytes]:
        return self._read(os.path.join(self.channel_dir, self._channel_key(channel)))

    def put_head(self, channel: str, head: bytes) -> None:
        self._write_atomic(os.path.join(self.channel_dir, self._channel_key(channel)), head)

    def get_block(self, block_hash: bytes) -> Optional[Block]:
        data = self._read(os.path.join(self.block_dir, encode_hash(block_hash)))
        if data is None:
            return None
        return Block.decode(data)

    def put_block(self, block_hash: bytes, block: Block) -> None:
        self._write_atomic(os.path.join(self.block_dir, encode_hash(block_hash)), block.encode())

    def get_block_entries(self, channel: str) -> List[BlockEntry]:
        d = os.path.join(self.entry_dir, self._channel_key(channel))
        if not os.path.isdir(d):
            return []
        staged: List[BlockEntry] = []
        for name in sorted(os.listdir(d)):
            if name.endswith(".tmp"):
                continue
            data = self._read(os.path.join(d, name))
            if data is not None:
                staged.append(BlockEntry.decode(data))
        staged.sort(key=lambda e: e.record.timestamp)
        return staged

    def put_block_entry(self, channel: str, entry: BlockEntry) -> None:
        d = os.path.join(self.entry_dir, self._channel_key(channel))
        os.makedirs(d, exist_ok=True)
        self._write_atomic(os.path.join(d, encode_hash(entry.record_hash)), entry.encode())

    def remove_block_entries(self, channel: str, record_hashes: Iterable[bytes]) -> None:
        d = os.path.join(self.entry_dir, self._channel_key(channel))
        for h in record_hashes:
            try:
                os.remove(os.path.join(d, encode_hash(h)))
            except FileNotFoundError:
                pass
