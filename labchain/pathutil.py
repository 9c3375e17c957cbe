from __future__ import annotations

import os
from typing import List


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)


def to_segments(p: str) -> List[str]:
    n = norm_path(p)
    return n.split("/") if n else []


def _fs_separators() -> List[str]:
    return [s for s in (os.sep, os.altsep) if s]


def relative_segments(fs_path: str, root: str) -> List[str]:
    """Segments of ``fs_path`` relative to the parent of ``root``.

    Archiving ``/data/run1`` stores ``run1/a.txt``; archiving the single file
    ``/data/run1/a.txt`` stores ``a.txt``. Only the platform separators split
    segments, so a POSIX name holding a backslash stays one segment.
    """
    root = os.path.abspath(root)
    base = os.path.dirname(root.rstrip(os.sep)) or root
    rel = os.path.relpath(os.path.abspath(fs_path), start=base)
    seps = _fs_separators()
    for s in seps[1:]:
        rel = rel.replace(s, seps[0])
    segments = [q for q in rel.split(seps[0]) if q not in ("", ".")]
    if ".." in segments:
        raise ValueError(f"Path {fs_path!r} is outside {base!r}")
    return segments


def join_segments(dest_root: str, segments: List[str]) -> str:
    """Join ``segments`` below ``dest_root``; each must be a single plain name."""
    if not segments:
        raise ValueError(f"Invalid path segments: {segments!r}")
    seps = _fs_separators()
    for q in segments:
        if q in ("", ".", "..") or any(s in q for s in seps):
            raise ValueError(f"Invalid path segments: {segments!r}")
    return os.path.join(dest_root, *segments)
