import io
import json
import random
import tempfile
import unittest
from pathlib import Path

from chunkvault.chunker import Chunker
from chunkvault.compressors import CompressMethod
from chunkvault.config.backend_config import BackendType
from chunkvault.config.config import Config
from chunkvault.types.hash_method import HashMethod


class ConfigTestCase(unittest.TestCase):
	def setUp(self):
		self.temp_dir = tempfile.TemporaryDirectory()
		self.config_path = Path(self.temp_dir.name) / 'config.json'

	def tearDown(self):
		self.temp_dir.cleanup()

	def write(self, data: dict):
		self.config_path.write_text(json.dumps(data), encoding='utf8')

	def test_partial_file(self):
		self.write({
			'backup': {'source_root': '/data', 'hash_method': 'sha3_256', 'compress_method': 'gzip'},
			'gc': {'grace_period': '2h'},
		})
		config = Config.load(self.config_path)
		self.assertEqual(Path('/data'), config.source_path)
		self.assertEqual(HashMethod.sha3_256, config.backup.hash_method)
		self.assertEqual(CompressMethod.gzip, config.backup.compress_method)
		self.assertEqual(2 * 60 * 60, config.gc.grace_period.value)
		self.assertEqual(BackendType.local, config.backend.type)
		self.assertFalse(config.backup.always_rehash)

	def test_save_load(self):
		self.write({'storage_root': '/var/cv', 'backend': {'max_concurrency': 8}})
		config = Config.load(self.config_path)
		saved_path = Path(self.temp_dir.name) / 'saved.json'
		config.save(saved_path)
		self.assertEqual(config.serialize(), Config.load(saved_path).serialize())
		self.assertEqual(8, Config.load(saved_path).backend.max_concurrency)

	def test_bad_values(self):
		for data in [
			[1, 2],
			{'backend': {'type': 'azure'}},
			{'backend': {'max_concurrency': 0}},
			{'backup': {'chunk_min_size': '8MiB', 'chunk_avg_size': '1MiB'}},
			{'prune': {'timezone_override': 'Mars/Olympus_Mons'}},
		]:
			with self.subTest(data=data):
				self.write(data)
				with self.assertRaises(ValueError):
					Config.load(self.config_path)

	def test_default_chunk_sizes(self):
		config = Config.get_default()
		chunker = Chunker(config.backup.get_chunk_size_bounds(), config.backup.hash_method)
		data = bytearray(random.Random(3).randbytes(1024 * 1024))
		ids1 = [c.chunk_id for c in chunker.iter_chunks(io.BytesIO(bytes(data)))]
		data[len(data) // 2] ^= 0xFF
		ids2 = [c.chunk_id for c in chunker.iter_chunks(io.BytesIO(bytes(data)))]
		self.assertGreaterEqual(len(ids1), 8)
		self.assertLessEqual(len(set(ids2) - set(ids1)), 3)

	def test_effective_concurrency(self):
		config = Config.get_default()
		self.assertGreaterEqual(config.get_effective_concurrency(), 1)
		config.concurrency = 3
		self.assertEqual(3, config.get_effective_concurrency())


if __name__ == '__main__':
	unittest.main()
