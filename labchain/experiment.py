"""Experiments: a path chain indexing one content chain per archived file.

The path chain ``Lab-Path-<id>`` holds one PathEntry record per file. The
content chain of a file is never stored; it is named after the hash of the
PathEntry record that announced it (``Lab-File-<base64url(hash)>``) and looked
up by that name.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Sequence, Tuple

from .chain import Channel, MiningListener
from .constants import DEFAULT_THRESHOLD, EXPERIMENT_ID_LENGTH, MAX_DELTA_LENGTH, ChainKind
from .delta import Delta, apply_to_path, path_to_deltas, stream_to_deltas
from .entry import PathEntry
from .errors import ChannelError
from .hashutil import encode_hash, random_string
from .logging_config import get_logger
from .pathutil import join_segments, relative_segments, to_segments
from .replay import iterate_deltas, iterate_paths


log = get_logger(__name__)


@dataclass
class Experiment:
    id: str
    path: Channel

    def __str__(self) -> str:
        return self.id


def open_path_channel(experiment_id: str, threshold: int = DEFAULT_THRESHOLD) -> Channel:
    return Channel(ChainKind.PATH.channel_name(experiment_id), threshold)


def open_file_channel(file_id: str, threshold: int = DEFAULT_THRESHOLD) -> Channel:
    return Channel(ChainKind.FILE.channel_name(file_id), threshold)


def file_id_for(record_hash: bytes) -> str:
    return encode_hash(record_hash)


def content_channel_name(record_hash: bytes) -> str:
    return ChainKind.FILE.channel_name(file_id_for(record_hash))


def _delta_writer(node, listener: Optional[MiningListener], channel: Channel):
    def _write(d: Delta) -> None:
        node.write(listener, channel, d.encode())

    return _write


def create_path(
    node,
    listener: Optional[MiningListener],
    channel: Channel,
    segments: Sequence[str],
) -> Tuple[str, Channel]:
    """Write a PathEntry to ``channel`` and open the file's content chain.

    Returns ``(file_id, content_channel)``.
    """
    record_hash = node.write(listener, channel, PathEntry(segments=tuple(segments)).encode())
    file_id = file_id_for(record_hash)
    file_channel = open_file_channel(file_id, channel.threshold)
    node.add_channel(file_channel)
    return file_id, file_channel


def create_path_from_reader(
    node,
    listener: Optional[MiningListener],
    channel: Channel,
    segments: Sequence[str],
    reader: BinaryIO,
    max_chunk_size: int = MAX_DELTA_LENGTH,
) -> Tuple[str, Channel]:
    file_id, file_channel = create_path(node, listener, channel, segments)
    stream_to_deltas(reader, max_chunk_size, _delta_writer(node, listener, file_channel))
    return file_id, file_channel


def _new_experiment(node, threshold: int) -> Experiment:
    # No collision check; 16 random alphanumerics
    experiment_id = random_string(EXPERIMENT_ID_LENGTH)
    p = open_path_channel(experiment_id, threshold)
    node.add_channel(p)
    return Experiment(id=experiment_id, path=p)


def create_from_reader(
    node,
    listener: Optional[MiningListener],
    uri: str,
    reader: Optional[BinaryIO],
    threshold: int = DEFAULT_THRESHOLD,
    max_chunk_size: int = MAX_DELTA_LENGTH,
) -> Experiment:
    """Create an experiment holding the single stream ``reader`` under ``uri``."""
    experiment = _new_experiment(node, threshold)
    if uri and reader is not None:
        segments = to_segments(uri.replace(os.sep, "/"))
        create_path_from_reader(node, listener, experiment.path, segments, reader, max_chunk_size)
    log.info("experiment_created", experiment=experiment.id, files=1 if uri and reader is not None else 0)
    return experiment


def _iter_regular_files(root: str):
    """Yield regular files under ``root`` in lexical order; links and specials are skipped."""
    st = os.lstat(root)
    if stat.S_ISREG(st.st_mode):
        yield root
        return
    if not stat.S_ISDIR(st.st_mode):
        return

    def _raise(error: OSError) -> None:
        raise error

    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise, followlinks=False):
        dirnames.sort()
        for name in sorted(filenames):
            full = os.path.join(dirpath, name)
            if stat.S_ISREG(os.lstat(full).st_mode):
                yield full


def _collect_files(paths: Sequence[str]) -> List[Tuple[str, List[str]]]:
    """List ``(fs_path, segments)`` for every file under ``paths``.

    Two files that would be saved to the same place raise ``ValueError``.
    """
    found: List[Tuple[str, List[str]]] = []
    seen = {}
    for root in paths:
        for full in _iter_regular_files(root):
            segments = relative_segments(full, root)
            key = tuple(segments)
            if key in seen:
                raise ValueError(f"{full!r} and {seen[key]!r} would both be saved as {'/'.join(segments)!r}")
            seen[key] = full
            found.append((full, segments))
    return found


def create_from_paths(
    node,
    listener: Optional[MiningListener],
    *paths: str,
    threshold: int = DEFAULT_THRESHOLD,
    max_chunk_size: int = MAX_DELTA_LENGTH,
) -> Experiment:
    """Archive every regular file under ``paths`` into a new experiment.

    Each file gets one PathEntry on the path chain and its own content chain of
    Deltas. The inputs are listed before anything is written; after that the
    first error aborts and records already written stay written.
    """
    files = _collect_files(paths)
    experiment = _new_experiment(node, threshold)
    for full, segments in files:
        file_id, file_channel = create_path(node, listener, experiment.path, segments)
        path_to_deltas(full, max_chunk_size, _delta_writer(node, listener, file_channel))
        log.debug("file_archived", experiment=experiment.id, path="/".join(segments), file=file_id)
    log.info("experiment_created", experiment=experiment.id, files=len(files))
    return experiment


def open_experiment(node, experiment_id: str, threshold: int = DEFAULT_THRESHOLD) -> Experiment:
    """Reopen an experiment; cache and network failures are logged and ignored."""
    p = node.load_channel(open_path_channel(experiment_id, threshold))
    return Experiment(id=experiment_id, path=p)


def resolve_content_channel(node, record_hash: bytes, threshold: int) -> Channel:
    name = content_channel_name(record_hash)
    try:
        return node.get_channel(name)
    except ChannelError:
        pass
    channel = node.load_channel(Channel(name, threshold))
    if channel.head is None:
        # Also the state of an archived empty file, which has no Deltas
        log.warning("content_chain_missing", channel=name)
    return channel


def save(node, experiment: Experiment, dest_root: str) -> List[str]:
    """Rebuild every file of ``experiment`` below ``dest_root``.

    Each output file is started empty and every Delta of its content chain is
    applied in chain order. Returns the written paths.
    """
    written: List[str] = []

    def _visit(record_hash, record, entry: PathEntry) -> None:
        out = join_segments(dest_root, list(entry.segments))
        os.makedirs(os.path.dirname(out) or ".", exist_ok=True)
        with open(out, "wb"):
            pass
        channel = resolve_content_channel(node, record_hash, experiment.path.threshold)
        iterate_deltas(node, channel, lambda h, r, d: apply_to_path(d, out))
        written.append(out)

    iterate_paths(node, experiment.path, _visit)
    log.info("experiment_saved", experiment=experiment.id, files=len(written), destination=dest_root)
    return written


def clean(node, experiment_id: str) -> None:
    """Reserved for removing an experiment's blocks from the cache; does nothing."""
    return None
