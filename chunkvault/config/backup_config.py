from typing import List, Any

from mcdreforged.api.utils import Serializable

from chunkvault.chunker import ChunkSizeBounds
from chunkvault.compressors import CompressMethod
from chunkvault.types.hash_method import HashMethod
from chunkvault.types.units import ByteCount


class BackupConfig(Serializable):
	source_root: str = './source'
	ignore_patterns: List[str] = []  # gitignore syntax, related to source_root
	hash_method: HashMethod = HashMethod.sha256
	compress_method: CompressMethod = CompressMethod.zstd
	compress_threshold: ByteCount = ByteCount('1KiB')

	# Smaller chunks dedup finer, an edit re-uploads about one avg_size, but mean more blobs and more index rows.
	# A 1MiB file is cut into about 16 chunks with these defaults
	chunk_min_size: ByteCount = ByteCount('16KiB')
	chunk_avg_size: ByteCount = ByteCount('64KiB')
	chunk_max_size: ByteCount = ByteCount('256KiB')

	# Files with unchanged size and mtime reuse the chunk list of the previous snapshot without being read.
	# A content change that keeps both size and mtime is then missed until the file changes again.
	# Set to true to always re-read and re-chunk every file
	always_rehash: bool = False

	# download every freshly uploaded chunk, and check its content against the chunk id
	verify_uploads: bool = False

	# how many times to re-read a file that keeps changing while it's being chunked
	volatile_file_retry_count: int = 3

	def validate_attribute(self, attr_name: str, attr_value: Any, **kwargs):
		if attr_name == 'volatile_file_retry_count' and attr_value < 1:
			raise ValueError('volatile_file_retry_count should be at least 1')

	def on_deserialization(self, **kwargs):
		self.get_chunk_size_bounds().validate()

	def get_chunk_size_bounds(self) -> ChunkSizeBounds:
		return ChunkSizeBounds(
			min_size=self.chunk_min_size.value,
			avg_size=self.chunk_avg_size.value,
			max_size=self.chunk_max_size.value,
		)
