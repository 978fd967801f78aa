"""
Content-defined chunking

Boundaries are found with FastCDC, a gear-based rolling hash over the content itself,
so an edit only moves the boundaries next to it, and identical byte sequences are cut
identically no matter which file, offset or run they appear in
"""
import dataclasses
from pathlib import Path
from typing import BinaryIO, Iterator

from fastcdc import fastcdc

from chunkvault.types.chunk import Chunk
from chunkvault.types.hash_method import HashMethod
from chunkvault.utils import hash_utils

# limits of the fastcdc implementation
_MIN_SIZE_LOWER_BOUND = 64
_AVG_SIZE_LOWER_BOUND = 256
_MAX_SIZE_LOWER_BOUND = 1024
_MAX_SIZE_UPPER_BOUND = 2 ** 30

# read window of iter_chunks, in max_size
_WINDOW_FACTOR = 4


@dataclasses.dataclass(frozen=True)
class ChunkSizeBounds:
	min_size: int
	avg_size: int
	max_size: int

	def validate(self):
		if not (self.min_size <= self.avg_size <= self.max_size):
			raise ValueError('chunk sizes must satisfy min <= avg <= max, got {}'.format(self))
		if self.min_size < _MIN_SIZE_LOWER_BOUND:
			raise ValueError('min chunk size {} is smaller than {}'.format(self.min_size, _MIN_SIZE_LOWER_BOUND))
		if self.avg_size < _AVG_SIZE_LOWER_BOUND:
			raise ValueError('avg chunk size {} is smaller than {}'.format(self.avg_size, _AVG_SIZE_LOWER_BOUND))
		if not (_MAX_SIZE_LOWER_BOUND <= self.max_size <= _MAX_SIZE_UPPER_BOUND):
			raise ValueError('max chunk size {} out of range [{}, {}]'.format(self.max_size, _MAX_SIZE_LOWER_BOUND, _MAX_SIZE_UPPER_BOUND))


class Chunker:
	def __init__(self, bounds: ChunkSizeBounds, hash_method: HashMethod):
		bounds.validate()
		self.bounds = bounds
		self.hash_method = hash_method

	def iter_chunks(self, stream: BinaryIO) -> Iterator[Chunk]:
		"""
		Lazily cut the stream into chunks. Any binary stream works, it's only read sequentially
		with read(), in windows of a few max_size. An empty stream produces no chunk.

		A boundary only depends on the bytes from the start of its chunk up to max_size after it, so
		a chunk is emitted once that much data is buffered, or at the end of the stream. The cut
		is then the same as if the whole stream was chunked at once
		"""
		window_size = _WINDOW_FACTOR * self.bounds.max_size
		buf = b''
		base_offset = 0
		eof = False
		while True:
			while not eof and len(buf) < window_size:
				data = stream.read(window_size - len(buf))
				if not data:
					eof = True
				else:
					buf += data
			if not buf:
				return

			consumed = 0
			for cdc_chunk in fastcdc(
					buf,
					min_size=self.bounds.min_size,
					avg_size=self.bounds.avg_size,
					max_size=self.bounds.max_size,
					fat=True,
			):
				if cdc_chunk.offset != consumed:
					raise AssertionError('non-contiguous chunk at offset {} (expected {})'.format(base_offset + cdc_chunk.offset, base_offset + consumed))
				if not eof and cdc_chunk.offset + self.bounds.max_size > len(buf):
					break  # not enough lookahead yet, cut it again with the next window
				data = bytes(cdc_chunk.data)
				consumed += len(data)
				yield Chunk(
					offset=base_offset + cdc_chunk.offset,
					data=data,
					chunk_id=hash_utils.calc_chunk_id(data, self.hash_method),
				)

			if eof and consumed != len(buf):
				raise AssertionError('{} trailing bytes were not chunked'.format(len(buf) - consumed))
			buf = buf[consumed:]
			base_offset += consumed

	def iter_file_chunks(self, path: Path) -> Iterator[Chunk]:
		with open(path, 'rb') as f:
			yield from self.iter_chunks(f)
