import os
import sys
import tempfile
import unittest
from pathlib import Path

from chunkvault.action.helpers.snapshot_differ import SnapshotDiffer, DiffAction
from chunkvault.action.helpers.manifest_builder import ManifestBuilder
from chunkvault.action.helpers.tree_walker import TreeWalker, EntryKind, WalkEntry
from chunkvault.exceptions import SourceReadError
from chunkvault.types.chunk import ChunkId
from chunkvault.types.hash_method import HashMethod


class TreeWalkerTestCase(unittest.TestCase):
	def setUp(self):
		self.temp_dir = tempfile.TemporaryDirectory()
		self.root = Path(self.temp_dir.name) / 'src'
		(self.root / 'b' / 'c').mkdir(parents=True)
		(self.root / 'a.txt').write_bytes(b'aaa')
		(self.root / 'b' / 'z.txt').write_bytes(b'z')
		(self.root / 'b' / 'c' / 'd.log').write_bytes(b'log')
		(self.root / 'cache').mkdir()
		(self.root / 'cache' / 'x').write_bytes(b'x')
		os.symlink('a.txt', self.root / 'link')

	def tearDown(self):
		self.temp_dir.cleanup()

	def test_walk(self):
		walker = TreeWalker(self.root, [])
		entries = list(walker.walk())
		self.assertEqual(
			['a.txt', 'b', 'b/c', 'b/c/d.log', 'b/z.txt', 'cache', 'cache/x', 'link'],
			[e.path for e in entries],
		)
		by_path = {e.path: e for e in entries}
		self.assertEqual(EntryKind.file, by_path['a.txt'].kind)
		self.assertEqual(3, by_path['a.txt'].size)
		self.assertEqual(EntryKind.directory, by_path['b/c'].kind)
		self.assertEqual(EntryKind.symlink, by_path['link'].kind)
		self.assertEqual('a.txt', by_path['link'].link_target)
		self.assertEqual('d.log', by_path['b/c/d.log'].name)
		self.assertEqual([], walker.skipped)
		self.assertIsNotNone(walker.root_entry)

	def test_deterministic(self):
		self.assertEqual(list(TreeWalker(self.root, []).walk()), list(TreeWalker(self.root, []).walk()))

	def test_ignore(self):
		walker = TreeWalker(self.root, ['*.log', 'cache/', '/link'])
		paths = [e.path for e in walker.walk()]
		self.assertEqual(['a.txt', 'b', 'b/c', 'b/z.txt'], paths)
		self.assertEqual(3, walker.ignored_count)

	def test_negated_ignore(self):
		walker = TreeWalker(self.root, ['*.txt', '!a.txt'])
		paths = [e.path for e in walker.walk()]
		self.assertIn('a.txt', paths)
		self.assertNotIn('b/z.txt', paths)

	def test_special_file_skipped(self):
		if not hasattr(os, 'mkfifo'):
			self.skipTest('no fifo support')
		os.mkfifo(self.root / 'pipe')
		walker = TreeWalker(self.root, [])
		paths = [e.path for e in walker.walk()]
		self.assertNotIn('pipe', paths)
		self.assertEqual(['pipe'], [s.path for s in walker.skipped])

	@unittest.skipUnless(sys.platform.startswith('linux'), 'needs a filesystem that accepts non utf-8 names')
	def test_undecodable_name_skipped(self):
		with open(os.path.join(os.fsencode(self.root / 'b'), b'bad\xff.txt'), 'wb') as f:
			f.write(b'bad')
		os.symlink(b'bad\xfe', os.path.join(os.fsencode(self.root), b'badlink'))
		walker = TreeWalker(self.root, [])
		paths = [e.path for e in walker.walk()]
		self.assertEqual(['a.txt', 'b', 'b/c', 'b/c/d.log', 'b/z.txt', 'cache', 'cache/x', 'link'], paths)
		self.assertEqual(
			[('b/bad\\udcff.txt', 'name is not valid utf-8'), ('badlink', 'symlink target is not valid utf-8')],
			sorted((s.path, s.reason) for s in walker.skipped),
		)

	def test_bad_root(self):
		with self.assertRaises(SourceReadError):
			list(TreeWalker(self.root / 'nope', []).walk())
		with self.assertRaises(SourceReadError):
			list(TreeWalker(self.root / 'a.txt', []).walk())


class SnapshotDifferTestCase(unittest.TestCase):
	@classmethod
	def file(cls, path: str, size: int, mtime_ns: int) -> WalkEntry:
		return WalkEntry(path=path, kind=EntryKind.file, size=size, mtime_ns=mtime_ns, mode=0o644)

	@classmethod
	def previous(cls, hash_method: HashMethod = HashMethod.sha256):
		builder = ManifestBuilder(hash_method)
		builder.add_file('a', 10, 1000, 0o644, (ChunkId('1' * 64),))
		builder.add_file('d/b', 20, 2000, 0o644, (ChunkId('2' * 64),))
		return builder.build(1, None)

	def test_no_previous(self):
		differ = SnapshotDiffer(None, HashMethod.sha256)
		self.assertEqual(DiffAction.reprocess, differ.decide(self.file('a', 10, 1000)).action)
		self.assertEqual(0, differ.previous_file_count)

	def test_decide(self):
		differ = SnapshotDiffer(self.previous(), HashMethod.sha256)
		self.assertEqual(2, differ.previous_file_count)

		decision = differ.decide(self.file('a', 10, 1000))
		self.assertEqual(DiffAction.skip, decision.action)
		self.assertEqual((ChunkId('1' * 64),), decision.previous.chunk_ids)

		self.assertEqual(DiffAction.reprocess, differ.decide(self.file('a', 11, 1000)).action)
		self.assertEqual(DiffAction.reprocess, differ.decide(self.file('a', 10, 1001)).action)
		self.assertEqual(DiffAction.reprocess, differ.decide(self.file('new', 10, 1000)).action)
		self.assertEqual(DiffAction.skip, differ.decide(self.file('d/b', 20, 2000)).action)

	def test_verify_mode(self):
		differ = SnapshotDiffer(self.previous(), HashMethod.sha256, verify_mode=True)
		self.assertEqual(DiffAction.reprocess, differ.decide(self.file('a', 10, 1000)).action)

	def test_hash_method_changed(self):
		differ = SnapshotDiffer(self.previous(HashMethod.sha3_256), HashMethod.sha256)
		self.assertEqual(DiffAction.reprocess, differ.decide(self.file('a', 10, 1000)).action)

	def test_not_a_file(self):
		differ = SnapshotDiffer(None, HashMethod.sha256)
		with self.assertRaises(ValueError):
			differ.decide(WalkEntry(path='d', kind=EntryKind.directory, size=0, mtime_ns=0, mode=0o755))


if __name__ == '__main__':
	unittest.main()
