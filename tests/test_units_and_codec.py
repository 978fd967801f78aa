import random
import unittest

from chunkvault.compressors import CompressMethod, encode_chunk_blob, decode_chunk_blob
from chunkvault.exceptions import IntegrityError
from chunkvault.types.units import ByteCount, Duration


class UnitsTestCase(unittest.TestCase):
	def test_byte_count(self):
		self.assertEqual(4096, ByteCount('4096').value)
		self.assertEqual(64 * 1024, ByteCount('64KiB').value)
		self.assertEqual(1024 ** 2, ByteCount('1MiB').value)
		self.assertEqual(2 * 10 ** 9, ByteCount('2G').value)
		self.assertEqual(1024, ByteCount(1024).value)
		self.assertEqual('1KiB', ByteCount(1024).auto_str(ndigits=0))

	def test_duration(self):
		self.assertEqual(90, Duration('90').value)
		self.assertEqual(1.5, Duration('1.5s').value)
		self.assertEqual(30 * 60, Duration('30m').value)
		self.assertEqual(6 * 3600, Duration('6h').value)
		self.assertEqual(7 * 86400, Duration('7d').value)
		self.assertEqual(2 * 10 ** 9, Duration('2s').value_nano)
		self.assertEqual(120, Duration(120).value)

	def test_bad_values(self):
		with self.assertRaises(ValueError):
			ByteCount('12 apples')
		with self.assertRaises(ValueError):
			Duration('3 fortnights')


class ChunkBlobCodecTestCase(unittest.TestCase):
	def test_plain(self):
		blob = encode_chunk_blob(b'hello', CompressMethod.plain)
		self.assertEqual(b'CV\x00hello', blob)
		self.assertEqual(b'hello', decode_chunk_blob(blob, 'x'))

	def test_compressed(self):
		data = b'abcdefgh' * 4096
		for method in [CompressMethod.zstd, CompressMethod.gzip, CompressMethod.lzma]:
			with self.subTest(method=method):
				blob = encode_chunk_blob(data, method)
				self.assertLess(len(blob), len(data))
				self.assertEqual(b'CV', blob[:2])
				self.assertNotEqual(0, blob[2])
				self.assertEqual(data, decode_chunk_blob(blob, 'x'))

	def test_incompressible_stored_plain(self):
		data = random.Random(1).randbytes(8192)
		blob = encode_chunk_blob(data, CompressMethod.zstd)
		self.assertEqual(b'CV\x00' + data, blob)

	def test_threshold(self):
		data = b'a' * 100
		self.assertEqual(b'CV\x00' + data, encode_chunk_blob(data, CompressMethod.zstd, threshold=1024))
		self.assertNotEqual(b'CV\x00' + data, encode_chunk_blob(data, CompressMethod.zstd, threshold=10))

	def test_gzip_deterministic(self):
		data = b'xyz' * 1000
		self.assertEqual(encode_chunk_blob(data, CompressMethod.gzip), encode_chunk_blob(data, CompressMethod.gzip))

	def test_bad_blobs(self):
		for blob in [b'', b'C', b'XX\x00data', b'CV\x7fdata', b'CV\x03not zstd at all']:
			with self.subTest(blob=blob):
				with self.assertRaises(IntegrityError):
					decode_chunk_blob(blob, 'abc')


if __name__ == '__main__':
	unittest.main()
