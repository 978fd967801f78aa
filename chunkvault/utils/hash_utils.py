import re
from typing import TYPE_CHECKING

from chunkvault.types.chunk import ChunkId

if TYPE_CHECKING:
	from chunkvault.types.hash_method import Hasher, HashMethod

_HEX_RE = re.compile(r'[0-9a-f]+')


def create_hasher(hash_method: 'HashMethod') -> 'Hasher':
	return hash_method.value.create_hasher()


def calc_chunk_id(data: bytes, hash_method: 'HashMethod') -> ChunkId:
	"""
	The content addresser: same bytes, same id
	"""
	hasher = create_hasher(hash_method)
	hasher.update(data)
	return ChunkId(hasher.hexdigest())


def is_valid_chunk_id(s: str, hash_method: 'HashMethod') -> bool:
	return len(s) == hash_method.value.hex_length and _HEX_RE.fullmatch(s) is not None
