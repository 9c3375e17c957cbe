"""
labchain - archive directories into signed, append-only delta chains.

Features:

- Experiments: one path chain per experiment, one content chain per archived file.
- Files are cut into sequential append-only Deltas, one signed record per Delta.
- Save replays every content chain oldest-first to rebuild files byte for byte.
- Hash-linked blocks gated by a proof-of-work threshold, cached locally and
  pushed to / pulled from peer cache directories.
- RSA-PSS record signatures; private keys sealed with Argon2id + ChaCha20-Poly1305.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "delta",
    "entry",
    "chain",
    "cache",
    "network",
    "node",
    "replay",
    "experiment",
]

# Programmatic API: labchain.node (Node, get_node, init_node) together with
# labchain.experiment (create_from_paths, open_experiment, save).
