import dataclasses
from typing import NewType

ChunkId = NewType('ChunkId', str)
"""lowercase hex digest of the chunk bytes"""


@dataclasses.dataclass(frozen=True)
class Chunk:
	"""
	A content-defined byte range of a file. Only lives during processing,
	the bytes are persisted remotely as a write-once blob keyed by the id
	"""
	offset: int
	data: bytes
	chunk_id: ChunkId

	@property
	def size(self) -> int:
		return len(self.data)

	@property
	def end(self) -> int:
		return self.offset + len(self.data)
