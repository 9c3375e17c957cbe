"""Runtime configuration for labchain.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

import getpass
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from .constants import DEFAULT_THRESHOLD
from .errors import LabConfigError


@dataclass(frozen=True)
class LabConfig:
    """Validated runtime configuration.

    Attributes:
        root_dir: Local root directory holding keys and the block cache.
        cache_dir: Directory of the local :class:`~labchain.cache.FileCache`.
        keys_dir: Directory holding password-protected private keys.
        alias: Name records and blocks are created under.
        peers: Peer cache directories for pull/push.
        threshold: Mining threshold in leading zero bits.
    """

    root_dir: Path
    cache_dir: Path
    keys_dir: Path
    alias: str
    peers: Tuple[str, ...]
    threshold: int

    @classmethod
    def from_env(cls) -> "LabConfig":
        """Build config from process environment variables.

        Raises:
            LabConfigError: If environment values are invalid.
        """
        root_dir = Path(os.getenv("LAB_ROOT_DIRECTORY", "~/lab")).expanduser().resolve()
        cache_dir = Path(os.getenv("LAB_CACHE_DIRECTORY", str(root_dir / "cache"))).expanduser().resolve()
        keys_dir = Path(os.getenv("LAB_KEYS_DIRECTORY", str(root_dir / "keys"))).expanduser().resolve()
        alias = os.getenv("LAB_ALIAS") or getpass.getuser()
        peers = split_remove_empty(os.getenv("LAB_PEERS", ""), ",")
        threshold = _parse_threshold(os.getenv("LAB_THRESHOLD", str(DEFAULT_THRESHOLD)))
        return cls(
            root_dir=root_dir,
            cache_dir=cache_dir,
            keys_dir=keys_dir,
            alias=alias,
            peers=peers,
            threshold=threshold,
        )

    def with_peers(self, peers: Tuple[str, ...]) -> "LabConfig":
        return LabConfig(
            root_dir=self.root_dir,
            cache_dir=self.cache_dir,
            keys_dir=self.keys_dir,
            alias=self.alias,
            peers=tuple(self.peers) + tuple(peers),
            threshold=self.threshold,
        )


def split_remove_empty(value: str, sep: str) -> Tuple[str, ...]:
    return tuple(p.strip() for p in value.split(sep) if p.strip())


def _parse_threshold(raw_value: str) -> int:
    try:
        threshold = int(raw_value)
    except ValueError as error:
        raise LabConfigError(
            "Invalid LAB_THRESHOLD value: "
            f"expected integer, got '{raw_value}'. "
            "Set LAB_THRESHOLD to the number of leading zero bits blocks must carry."
        ) from error
    if threshold < 0 or threshold > 512:
        raise LabConfigError(f"Invalid LAB_THRESHOLD value: {threshold} is outside 0..512")
    return threshold
