from __future__ import annotations

import dataclasses
import tempfile
import unittest
from pathlib import Path

from Cryptodome.PublicKey import RSA

from labchain.cache import FileCache, MemoryCache
from labchain.chain import Block, Channel, MiningListener, iterate_chronologically
from labchain.delta import Delta
from labchain.errors import ChainValidationError, ChannelError, MalformedChainError, NoEntriesToMineError
from labchain.hashutil import decode_hash, encode_hash, leading_zero_bits
from labchain.network import DirectoryNetwork
from labchain.node import Node, lookup_alias, register_alias
from labchain.records import Record, create_record, hash_record, verify_record
from labchain.replay import iterate, iterate_channel, iterate_deltas


class _CountingListener(MiningListener):
    def __init__(self):
        self.started = 0
        self.reached = 0

    def on_mining_started(self, channel, size):
        self.started += 1

    def on_mining_threshold_reached(self, channel, block_hash, nonce):
        self.reached += 1


class _KeyedTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.key = RSA.generate(2048)


class RecordTests(_KeyedTestCase):
    def test_signature_verifies(self):
        h, record = create_record(123, "alice", self.key, b"payload")
        self.assertEqual(h, hash_record(record))
        self.assertEqual(len(h), 64)
        self.assertTrue(verify_record(record, self.key.public_key()))
        forged = dataclasses.replace(record, payload=b"other")
        self.assertFalse(verify_record(forged, self.key.public_key()))

    def test_encoding_round_trip(self):
        _, record = create_record(7, "bob", self.key, b"\x00\x01")
        self.assertEqual(Record.decode(record.encode()), record)

    def test_unsigned_record(self):
        _, record = create_record(1, "anon", None, b"x")
        self.assertEqual(record.signature, b"")


class HashUtilTests(unittest.TestCase):
    def test_leading_zero_bits(self):
        self.assertEqual(leading_zero_bits(b"\x00\x00\x01"), 23)
        self.assertEqual(leading_zero_bits(b"\x80"), 0)
        self.assertEqual(leading_zero_bits(b"\x00\x10"), 11)
        self.assertEqual(leading_zero_bits(b"\x00\x00"), 16)

    def test_encode_hash_is_unpadded_url_safe(self):
        h = bytes(range(64))
        s = encode_hash(h)
        self.assertNotIn("=", s)
        self.assertNotIn("/", s)
        self.assertNotIn("+", s)
        self.assertEqual(decode_hash(s), h)


class MiningTests(_KeyedTestCase):
    def setUp(self):
        self.node = Node("alice", self.key, MemoryCache())

    def test_write_links_blocks_in_order(self):
        channel = Channel("Test", 0)
        self.node.add_channel(channel)
        hashes = [self.node.write(None, channel, f"record {i}".encode()) for i in range(3)]

        seen = []
        iterate_chronologically(
            channel.name,
            channel.head,
            self.node.cache,
            None,
            lambda h, b: seen.append((b.length, b.entries[0].record_hash)),
        )
        self.assertEqual([length for length, _ in seen], [1, 2, 3])
        self.assertEqual([rh for _, rh in seen], hashes)
        self.assertEqual(self.node.cache.get_head(channel.name), channel.head)
        self.assertEqual(self.node.cache.get_block_entries(channel.name), [])

    def test_threshold_is_met(self):
        channel = Channel("Hard", 6)
        listener = _CountingListener()
        self.node.write(listener, channel, b"x")
        self.assertGreaterEqual(leading_zero_bits(channel.head), 6)
        self.assertEqual((listener.started, listener.reached), (1, 1))

    def test_nothing_to_mine(self):
        with self.assertRaises(NoEntriesToMineError):
            self.node.mine(Channel("Empty", 0), 0)

    def test_tampered_block_rejected(self):
        channel = Channel("Tamper", 0)
        self.node.write(None, channel, b"x")
        block = self.node.cache.get_block(channel.head)
        bad = dataclasses.replace(block, length=5)
        other = Channel("Tamper", 0)
        with self.assertRaises(ChainValidationError):
            other.update(self.node.cache, None, channel.head, bad)

    def test_below_threshold_rejected(self):
        channel = Channel("Weak", 0)
        self.node.write(None, channel, b"x")
        strict = Channel("Weak", 512)
        with self.assertRaises(ChainValidationError):
            strict.update(self.node.cache, None, channel.head, self.node.cache.get_block(channel.head))

    def test_shorter_chain_does_not_replace_head(self):
        channel = Channel("Len", 0)
        self.node.write(None, channel, b"a")
        first = channel.head
        self.node.write(None, channel, b"b")
        with self.assertRaises(ChainValidationError):
            channel.update(self.node.cache, None, first, self.node.cache.get_block(first))


class ReplayTests(_KeyedTestCase):
    def setUp(self):
        self.node = Node("alice", self.key, MemoryCache())

    def test_deltas_replay_oldest_first(self):
        channel = Channel("Lab-File-abc", 0)
        for d in (Delta(offset=0, added=b"foo"), Delta(offset=3, added=b"bar")):
            self.node.write(None, channel, d.encode())
        got = []
        iterate_deltas(self.node, channel, lambda h, r, d: got.append(d))
        self.assertEqual([d.offset for d in got], [0, 3])
        kinds = []
        iterate_channel(self.node, channel, lambda h, r, v: kinds.append(type(v)))
        self.assertEqual(kinds, [Delta, Delta])

    def test_malformed_payload_aborts(self):
        channel = Channel("Lab-File-bad", 0)
        self.node.write(None, channel, Delta(added=b"ok").encode())
        self.node.write(None, channel, b"\xff\xff\xff")
        got = []
        with self.assertRaises(MalformedChainError):
            iterate_deltas(self.node, channel, lambda h, r, d: got.append(d))
        self.assertEqual(len(got), 1)

    def test_callback_error_aborts(self):
        channel = Channel("Lab-File-cb", 0)
        self.node.write(None, channel, b"one")
        self.node.write(None, channel, b"two")
        calls = []

        def _cb(h, r, v):
            calls.append(v)
            raise RuntimeError("stop")

        with self.assertRaises(RuntimeError):
            iterate(self.node, channel, bytes, _cb)
        self.assertEqual(calls, [b"one"])

    def test_empty_channel_visits_nothing(self):
        got = []
        iterate_deltas(self.node, Channel("Lab-File-none", 0), lambda h, r, d: got.append(d))
        self.assertEqual(got, [])


class CacheAndNetworkTests(_KeyedTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)

    def test_file_cache_persists_head_and_blocks(self):
        node = Node("alice", self.key, FileCache(str(self.root / "cache")))
        channel = Channel("Persist", 0)
        node.write(None, channel, b"hello")

        reopened = Channel("Persist", 0)
        reopened.load_cached_head(FileCache(str(self.root / "cache")))
        self.assertEqual(reopened.head, channel.head)
        block = FileCache(str(self.root / "cache")).get_block(channel.head)
        self.assertIsInstance(block, Block)
        self.assertEqual(block.entries[0].record.payload, b"hello")

    def test_missing_cached_head(self):
        with self.assertRaises(ChannelError):
            Channel("Nope", 0).load_cached_head(FileCache(str(self.root / "cache")))

    def test_push_then_pull_through_peer_directory(self):
        peer_dir = str(self.root / "peer")
        writer = Node("alice", self.key, FileCache(str(self.root / "a")), DirectoryNetwork([peer_dir]))
        channel = Channel("Shared", 0)
        writer.write(None, channel, b"one")
        writer.write(None, channel, b"two")
        self.assertEqual(FileCache(peer_dir).get_head("Shared"), channel.head)

        reader = Node("bob", None, FileCache(str(self.root / "b")), DirectoryNetwork([peer_dir]))
        pulled = reader.load_channel(Channel("Shared", 0))
        self.assertEqual(pulled.head, channel.head)
        payloads = []
        iterate(reader, pulled, bytes, lambda h, r, v: payloads.append(v))
        self.assertEqual(payloads, [b"one", b"two"])

    def test_alias_registration(self):
        node = Node("alice", self.key, MemoryCache())
        self.assertTrue(register_alias(node, 0))
        self.assertFalse(register_alias(node, 0))
        self.assertEqual(lookup_alias(node, "alice"), self.key.public_key())
        self.assertIsNone(lookup_alias(node, "mallory"))


if __name__ == "__main__":
    unittest.main()
