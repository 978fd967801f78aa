import dataclasses
from abc import ABC, abstractmethod
from typing import Iterator

from chunkvault import constants
from chunkvault.types.chunk import ChunkId


@dataclasses.dataclass(frozen=True)
class BlobStat:
	key: str
	size: int
	mtime_ns: int  # last modification time reported by the store


def chunk_key(chunk_id: ChunkId) -> str:
	return f'{constants.CHUNK_KEY_PREFIX}{chunk_id[:2]}/{chunk_id}'


def chunk_id_from_key(key: str) -> ChunkId:
	if not key.startswith(constants.CHUNK_KEY_PREFIX):
		raise ValueError('{!r} is not a chunk key'.format(key))
	return ChunkId(key.rsplit('/', 1)[-1])


class BlobBackend(ABC):
	"""
	A flat key -> bytes store. Stateless from the caller's point of view: it owns nothing durable locally.

	Errors are reported as :class:`TransientBackendError` (worth another try), :class:`FatalBackendError`
	(never retried) or :class:`BlobNotFound`. Retrying is the caller's business

	Implementations must be safe to use from multiple threads
	"""

	@property
	@abstractmethod
	def namespace(self) -> str:
		"""
		A stable string identifying the store, e.g. the container url without credentials
		"""
		...

	@abstractmethod
	def exists(self, key: str) -> bool:
		...

	@abstractmethod
	def put(self, key: str, data: bytes):
		"""
		Write the whole blob. Overwriting an existing key is allowed, and a put with the same content is a no-op in effect
		"""
		...

	@abstractmethod
	def get(self, key: str) -> bytes:
		...

	@abstractmethod
	def delete(self, key: str):
		"""
		Deleting a missing key is not an error
		"""
		...

	@abstractmethod
	def list_blobs(self, prefix: str = '') -> Iterator[BlobStat]:
		...

	def close(self):
		pass

	def __enter__(self):
		return self

	def __exit__(self, exc_type, exc_val, exc_tb):
		self.close()
