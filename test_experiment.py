from __future__ import annotations

import io
import os
import tempfile
import unittest
import unittest.mock
from pathlib import Path
from typing import Dict

from Cryptodome.PublicKey import RSA

from labchain.cache import FileCache, MemoryCache
from labchain.constants import EXPERIMENT_ID_LENGTH, LAB_PREFIX_FILE, LAB_PREFIX_PATH
from labchain.delta import Delta
from labchain.experiment import (
    Experiment,
    clean,
    content_channel_name,
    create_from_paths,
    create_from_reader,
    create_path,
    open_experiment,
    open_path_channel,
    resolve_content_channel,
    save,
)
from labchain.hashutil import encode_hash
from labchain.network import DirectoryNetwork
from labchain.node import Node
from labchain.replay import iterate_deltas, iterate_paths


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files = {
        "top.txt": b"hello world\n" * 50,
        "docs/a.txt": b"alpha",
        "docs/b.bin": os.urandom(4096),
        "docs/deeper/c.md": b"# Title\nSome content\n",
        "data/d.bin": os.urandom(300),
    }
    for rel, data in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
    (root / "empty_dir").mkdir()
    return files


def _compare_trees(test: unittest.TestCase, expected: Dict[str, bytes], dst: Path):
    found = {}
    for dirpath, _dirnames, filenames in os.walk(dst):
        for name in filenames:
            full = Path(dirpath) / name
            found[full.relative_to(dst).as_posix()] = full.read_bytes()
    test.assertEqual(found, expected)


class ExperimentTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.key = RSA.generate(2048)

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.tmp = Path(self._tmp.name)
        self.src = self.tmp / "src"
        self.src.mkdir()
        self.node = Node("alice", self.key, MemoryCache())

    def _path_entries(self, node, experiment):
        entries = []
        iterate_paths(node, experiment.path, lambda h, r, e: entries.append((h, e)))
        return entries

    def test_create_and_save_directory(self):
        files = _build_fixture_tree(self.src)
        experiment = create_from_paths(self.node, None, str(self.src), threshold=0, max_chunk_size=1000)
        self.assertEqual(len(experiment.id), EXPERIMENT_ID_LENGTH)
        self.assertEqual(experiment.path.name, LAB_PREFIX_PATH + experiment.id)

        entries = self._path_entries(self.node, experiment)
        self.assertEqual(len(entries), len(files))
        self.assertEqual(
            sorted(e.as_posix() for _, e in entries),
            sorted("src/" + rel for rel in files),
        )
        names = {content_channel_name(h) for h, _ in entries}
        self.assertEqual(len(names), len(files))
        for h, entry in entries:
            channel = resolve_content_channel(self.node, h, 0)
            deltas = []
            iterate_deltas(self.node, channel, lambda rh, r, d: deltas.append(d))
            self.assertGreaterEqual(len(deltas), 1)
            self.assertEqual([d.removed for d in deltas], [b""] * len(deltas))

        out = self.tmp / "out"
        out.mkdir()
        written = save(self.node, experiment, str(out))
        self.assertEqual(len(written), len(files))
        _compare_trees(self, {"src/" + rel: data for rel, data in files.items()}, out)

    def test_multi_chunk_file(self):
        data = os.urandom(25)
        (self.src / "f.bin").write_bytes(data)
        experiment = create_from_paths(self.node, None, str(self.src / "f.bin"), threshold=0, max_chunk_size=10)
        [(h, entry)] = self._path_entries(self.node, experiment)
        self.assertEqual(entry.segments, ("f.bin",))
        deltas = []
        iterate_deltas(self.node, resolve_content_channel(self.node, h, 0), lambda rh, r, d: deltas.append(d))
        self.assertEqual([d.offset for d in deltas], [0, 10, 20])

        out = self.tmp / "out"
        save(self.node, experiment, str(out))
        self.assertEqual((out / "f.bin").read_bytes(), data)

    def test_symlinks_skipped_and_empty_files_restored(self):
        (self.src / "real.txt").write_bytes(b"real")
        (self.src / "empty.txt").write_bytes(b"")
        try:
            os.symlink("real.txt", self.src / "link.txt")
            os.symlink(str(self.src), self.src / "loop")
        except (OSError, NotImplementedError):
            self.skipTest("symlinks unavailable")
        experiment = create_from_paths(self.node, None, str(self.src), threshold=0)
        paths = sorted(e.as_posix() for _, e in self._path_entries(self.node, experiment))
        self.assertEqual(paths, ["src/empty.txt", "src/real.txt"])

        out = self.tmp / "out"
        save(self.node, experiment, str(out))
        _compare_trees(self, {"src/empty.txt": b"", "src/real.txt": b"real"}, out)

    def test_save_overwrites_existing_destination(self):
        (self.src / "a.txt").write_bytes(b"new contents")
        experiment = create_from_paths(self.node, None, str(self.src), threshold=0)
        out = self.tmp / "out"
        (out / "src").mkdir(parents=True)
        (out / "src" / "a.txt").write_bytes(b"stale bytes that are longer")
        save(self.node, experiment, str(out))
        self.assertEqual((out / "src" / "a.txt").read_bytes(), b"new contents")

    @unittest.skipIf(os.sep == "\\", "backslash is a separator here")
    def test_backslash_in_name_is_one_segment(self):
        (self.src / "a\\b.txt").write_bytes(b"odd name")
        (self.src / "a").mkdir()
        (self.src / "a" / "b.txt").write_bytes(b"nested")
        experiment = create_from_paths(self.node, None, str(self.src), threshold=0)
        entries = sorted(e.segments for _, e in self._path_entries(self.node, experiment))
        self.assertEqual(entries, [("src", "a", "b.txt"), ("src", "a\\b.txt")])

        out = self.tmp / "out"
        save(self.node, experiment, str(out))
        _compare_trees(self, {"src/a\\b.txt": b"odd name", "src/a/b.txt": b"nested"}, out)

    def test_roots_sharing_a_name_are_rejected(self):
        for parent, data in (("x", b"first"), ("y", b"second")):
            run = self.tmp / parent / "run"
            run.mkdir(parents=True)
            (run / "f").write_bytes(data)
        with self.assertRaises(ValueError):
            create_from_paths(self.node, None, str(self.tmp / "x" / "run"), str(self.tmp / "y" / "run"), threshold=0)
        self.assertEqual(self.node.channels, {})

    def test_missing_content_chain_is_reported(self):
        record_hash = bytes(64)
        with unittest.mock.patch("labchain.experiment.log") as log:
            channel = resolve_content_channel(self.node, record_hash, 0)
        self.assertIsNone(channel.head)
        log.warning.assert_called_once_with("content_chain_missing", channel=content_channel_name(record_hash))

    def test_create_aborts_on_missing_root(self):
        with self.assertRaises(FileNotFoundError):
            create_from_paths(self.node, None, str(self.tmp / "missing"), threshold=0)

    def test_create_from_reader(self):
        experiment = create_from_reader(self.node, None, "notes/today.txt", io.BytesIO(b"abc"), threshold=0)
        out = self.tmp / "out"
        save(self.node, experiment, str(out))
        self.assertEqual((out / "notes" / "today.txt").read_bytes(), b"abc")

    def test_create_from_reader_without_content(self):
        experiment = create_from_reader(self.node, None, "", None, threshold=0)
        self.assertIsNone(experiment.path.head)

    def test_create_path_returns_named_content_channel(self):
        channel = open_path_channel("abcdefghijklmnop", 0)
        file_id, file_channel = create_path(self.node, None, channel, ["x", "y.txt"])
        self.assertEqual(file_channel.name, LAB_PREFIX_FILE + file_id)
        [(h, entry)] = self._path_entries(self.node, Experiment(id="abcdefghijklmnop", path=channel))
        self.assertEqual(encode_hash(h), file_id)
        self.assertEqual(entry.segments, ("x", "y.txt"))
        self.assertIs(self.node.get_channel(file_channel.name), file_channel)

    def test_save_rejects_parent_segments(self):
        channel = open_path_channel("evilevilevilevil", 0)
        create_path(self.node, None, channel, ["..", "escape.txt"])
        with self.assertRaises(ValueError):
            save(self.node, Experiment(id="evilevilevilevil", path=channel), str(self.tmp / "out"))

    def test_hand_built_deltas_replay_on_save(self):
        channel = open_path_channel("handbuiltdeltas0", 0)
        _, file_channel = create_path(self.node, None, channel, ["f.txt"])
        for d in (
            Delta(offset=0, added=b"foobar"),
            Delta(offset=3, removed=b"bar", added=b"blah"),
            Delta(offset=0, removed=b"foo"),
        ):
            self.node.write(None, file_channel, d.encode())
        out = self.tmp / "out"
        save(self.node, Experiment(id="handbuiltdeltas0", path=channel), str(out))
        self.assertEqual((out / "f.txt").read_bytes(), b"blah")

    def test_open_with_fresh_node_over_shared_cache(self):
        files = _build_fixture_tree(self.src)
        cache_dir = str(self.tmp / "cache")
        with Node("alice", self.key, FileCache(cache_dir)) as writer:
            experiment = create_from_paths(writer, None, str(self.src), threshold=0)

        with Node("alice", self.key, FileCache(cache_dir)) as reader:
            opened = open_experiment(reader, experiment.id, threshold=0)
            self.assertEqual(opened.path.head, experiment.path.head)
            out = self.tmp / "out"
            save(reader, opened, str(out))
        _compare_trees(self, {"src/" + rel: data for rel, data in files.items()}, out)

    def test_open_pulls_from_peer(self):
        (self.src / "a.txt").write_bytes(b"shared")
        peer = str(self.tmp / "peer")
        writer = Node("alice", self.key, FileCache(str(self.tmp / "a")), DirectoryNetwork([peer]))
        experiment = create_from_paths(writer, None, str(self.src), threshold=0)

        reader = Node("bob", None, FileCache(str(self.tmp / "b")), DirectoryNetwork([peer]))
        opened = open_experiment(reader, experiment.id, threshold=0)
        out = self.tmp / "out"
        save(reader, opened, str(out))
        self.assertEqual((out / "src" / "a.txt").read_bytes(), b"shared")

    def test_open_unknown_experiment_is_not_fatal(self):
        opened = open_experiment(self.node, "unknownunknown00", threshold=0)
        self.assertIsNone(opened.path.head)
        self.assertEqual(save(self.node, opened, str(self.tmp / "out")), [])

    def test_clean_is_noop(self):
        (self.src / "a.txt").write_bytes(b"keep")
        experiment = create_from_paths(self.node, None, str(self.src), threshold=0)
        clean(self.node, experiment.id)
        out = self.tmp / "out"
        save(self.node, experiment, str(out))
        self.assertEqual((out / "src" / "a.txt").read_bytes(), b"keep")

    def test_content_channel_name_is_deterministic(self):
        h = bytes(range(64))
        self.assertEqual(content_channel_name(h), content_channel_name(bytes(h)))
        self.assertEqual(content_channel_name(h), LAB_PREFIX_FILE + encode_hash(h))


if __name__ == "__main__":
    unittest.main()
