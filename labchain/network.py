from __future__ import annotations

from typing import List, Optional, Sequence

from .cache import FileCache
from .chain import Block, Channel
from .logging_config import get_logger


log = get_logger(__name__)


class DirectoryNetwork:
    """Peer network whose peers are other :class:`FileCache` roots.

    A peer is typically a shared or mounted directory. Heads are resolved to the
    longest chain any peer holds; pushes copy missing blocks to every peer and
    advance a peer's head only when the pushed chain is longer.
    """

    def __init__(self, peers: Sequence[str] = ()):
        self.peers: List[FileCache] = [FileCache(p) for p in peers]

    def __repr__(self) -> str:
        return f"DirectoryNetwork({[p.root for p in self.peers]!r})"

    def add_peer(self, root: str) -> None:
        self.peers.append(FileCache(root))

    def get_head(self, channel: str) -> Optional[bytes]:
        best: Optional[bytes] = None
        best_length = 0
        for peer in self.peers:
            head = peer.get_head(channel)
            if head is None:
                continue
            block = peer.get_block(head)
            if block is None:
                continue
            if block.length > best_length:
                best, best_length = head, block.length
        return best

    def get_block(self, block_hash: bytes) -> Optional[Block]:
        for peer in self.peers:
            block = peer.get_block(block_hash)
            if block is not None:
                return block
        return None

    def broadcast(self, channel: Channel, cache, head: bytes, block: Block) -> None:
        for peer in self.peers:
            current = peer.get_head(channel.name)
            if current == head:
                continue
            if current is not None:
                current_block = peer.get_block(current)
                if current_block is not None and current_block.length >= block.length:
                    log.warning(
                        "peer_head_not_replaced",
                        peer=peer.root,
                        channel=channel.name,
                        peer_length=current_block.length,
                        length=block.length,
                    )
                    continue
            copied = 0
            block_hash, b = head, block
            while block_hash and peer.get_block(block_hash) is None:
                peer.put_block(block_hash, b)
                copied += 1
                block_hash = b.previous
                if block_hash:
                    b = cache.get_block(block_hash)
                    if b is None:
                        break
            peer.put_head(channel.name, head)
            log.debug("channel_pushed", peer=peer.root, channel=channel.name, blocks=copied)
