import json
import unittest

from chunkvault.action.helpers.manifest_builder import ManifestBuilder
from chunkvault.exceptions import BadManifest
from chunkvault.types.chunk import ChunkId
from chunkvault.types.hash_method import HashMethod
from chunkvault.types.manifest import Manifest, FileEntry, DirEntry, SymlinkEntry


def _cid(c: str) -> ChunkId:
	return ChunkId(c * 64)


class ManifestTestCase(unittest.TestCase):
	@classmethod
	def build(cls, snapshot_id: int = 1, previous_id=None) -> Manifest:
		builder = ManifestBuilder(HashMethod.sha256)
		builder.set_root(0o755, 1000)
		builder.add_file('b.txt', 10, 2000, 0o644, (_cid('a'), _cid('b')))
		builder.add_dir('dir', 0o700, 3000)
		builder.add_file('dir/x.bin', 5, 4000, 0o600, (_cid('b'),))
		builder.add_symlink('dir/link', '../b.txt', 5000, 0o777)
		builder.add_file('deep/er/e.txt', 0, 6000, 0o644, ())
		return builder.build(snapshot_id, previous_id, timestamp_ns=123, comment='hi')

	def test_tree_order(self):
		manifest = self.build()
		paths = [path for path, _ in manifest.iter_entries()]
		self.assertEqual(['b.txt', 'deep', 'deep/er', 'deep/er/e.txt', 'dir', 'dir/link', 'dir/x.bin'], paths)

	def test_find_entry(self):
		manifest = self.build()
		self.assertIsInstance(manifest.find_entry('dir'), DirEntry)
		self.assertIsInstance(manifest.find_entry('dir/x.bin'), FileEntry)
		self.assertIsInstance(manifest.find_entry('/dir/link'), SymlinkEntry)
		self.assertEqual('../b.txt', manifest.find_entry('dir/link').target)
		self.assertIs(manifest.root, manifest.find_entry(''))
		self.assertIsNone(manifest.find_entry('nope'))
		self.assertIsNone(manifest.find_entry('b.txt/inside'))
		# implicit directories get default metadata
		self.assertEqual(0o755, manifest.find_entry('deep/er').mode)

	def test_stats(self):
		manifest = self.build()
		stats = manifest.stats
		self.assertEqual(3, stats.file_count)
		self.assertEqual(3, stats.dir_count)
		self.assertEqual(1, stats.symlink_count)
		self.assertEqual(15, stats.total_size)
		self.assertEqual(3, stats.chunk_ref_count)
		self.assertEqual({_cid('a'), _cid('b')}, manifest.all_chunk_ids())

	def test_serialization(self):
		manifest = self.build(5, 4)
		loaded = Manifest.from_bytes(manifest.to_bytes())
		self.assertEqual(manifest, loaded)
		self.assertEqual(4, loaded.previous_id)
		self.assertEqual('hi', loaded.comment)
		self.assertTrue(manifest.content_equals(self.build(6, 5)))

	def test_content_equals(self):
		builder = ManifestBuilder(HashMethod.sha256)
		builder.add_file('b.txt', 10, 2000, 0o644, (_cid('a'), _cid('c')))
		self.assertFalse(self.build().content_equals(builder.build(1, None)))

	def test_bad_manifest(self):
		good = self.build().to_dict()
		for buf in [
			b'not json',
			b'[]',
			json.dumps({**good, 'format_version': 999}).encode(),
			json.dumps({**good, 'hash_method': 'md5'}).encode(),
			json.dumps({**good, 'root': {'type': 'file', 'name': 'x'}}).encode(),
			json.dumps({**good, 'root': {'type': 'socket', 'name': ''}}).encode(),
			json.dumps({k: v for k, v in good.items() if k != 'snapshot_id'}).encode(),
		]:
			with self.subTest(buf=buf[:40]):
				with self.assertRaises(BadManifest):
					Manifest.from_bytes(buf)

	def test_builder_conflicts(self):
		builder = ManifestBuilder(HashMethod.sha256)
		builder.add_file('a', 0, 0, 0o644, ())
		with self.assertRaises(ValueError):
			builder.add_dir('a', 0o755, 0)
		with self.assertRaises(ValueError):
			builder.add_file('a/b', 0, 0, 0o644, ())
		builder.add_dir('d', 0o755, 0)
		with self.assertRaises(ValueError):
			builder.add_symlink('d', 'x', 0, 0o777)
		for bad in ['', '/', 'x/../y', './a']:
			with self.assertRaises(ValueError):
				builder.add_file(bad, 0, 0, 0o644, ())


if __name__ == '__main__':
	unittest.main()
