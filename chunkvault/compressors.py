import enum
from abc import abstractmethod, ABC
from typing import Union, Dict

from chunkvault.exceptions import IntegrityError


class Compressor(ABC):
	@classmethod
	def create(cls, method: Union[str, 'CompressMethod']) -> 'Compressor':
		if not isinstance(method, CompressMethod):
			if method in CompressMethod.__members__:
				method = CompressMethod[method]
			else:
				raise ValueError(f'Unknown compression method: {method}')
		return method.value()

	@classmethod
	def get_method(cls) -> 'CompressMethod':
		return CompressMethod(cls)

	@classmethod
	@abstractmethod
	def ensure_lib(cls):
		...

	@abstractmethod
	def compress(self, data: bytes) -> bytes:
		...

	@abstractmethod
	def decompress(self, data: bytes) -> bytes:
		...


class PlainCompressor(Compressor):
	@classmethod
	def ensure_lib(cls):
		pass

	def compress(self, data: bytes) -> bytes:
		return data

	def decompress(self, data: bytes) -> bytes:
		return data


class _ModuleLevelCompressorBase(Compressor, ABC):
	"""
	For libraries that expose module level compress() / decompress() functions
	"""
	@classmethod
	@abstractmethod
	def _lib(cls):
		...

	@classmethod
	def ensure_lib(cls):
		cls._lib()

	def compress(self, data: bytes) -> bytes:
		return self._lib().compress(data)

	def decompress(self, data: bytes) -> bytes:
		return self._lib().decompress(data)


class GzipCompressor(_ModuleLevelCompressorBase):
	@classmethod
	def _lib(cls):
		import gzip
		return gzip

	def compress(self, data: bytes) -> bytes:
		# fixed mtime, so identical chunks always encode to identical blobs
		return self._lib().compress(data, mtime=0)


class LzmaCompressor(_ModuleLevelCompressorBase):
	@classmethod
	def _lib(cls):
		import lzma
		return lzma


class ZstdCompressor(Compressor):
	@classmethod
	def ensure_lib(cls):
		import zstandard
		_ = zstandard

	def compress(self, data: bytes) -> bytes:
		import zstandard
		return zstandard.ZstdCompressor().compress(data)

	def decompress(self, data: bytes) -> bytes:
		import zstandard
		return zstandard.ZstdDecompressor().decompress(data)


class Lz4Compressor(_ModuleLevelCompressorBase):
	@classmethod
	def _lib(cls):
		# noinspection PyPackageRequirements
		import lz4.frame
		return lz4.frame


class CompressMethod(enum.Enum):
	plain = PlainCompressor
	gzip = GzipCompressor
	lzma = LzmaCompressor
	zstd = ZstdCompressor
	lz4 = Lz4Compressor

	def __repr__(self) -> str:
		return '{}({!r})'.format(self.__class__.__name__, self.name)


# one byte codes written into the blob header. Never reuse or renumber
_METHOD_CODES: Dict[CompressMethod, int] = {
	CompressMethod.plain: 0,
	CompressMethod.gzip: 1,
	CompressMethod.lzma: 2,
	CompressMethod.zstd: 3,
	CompressMethod.lz4: 4,
}
_CODE_METHODS: Dict[int, CompressMethod] = {v: k for k, v in _METHOD_CODES.items()}
_BLOB_MAGIC = b'CV'
_HEADER_LEN = len(_BLOB_MAGIC) + 1


def encode_chunk_blob(data: bytes, method: CompressMethod, *, threshold: int = 0) -> bytes:
	"""
	raw chunk bytes -> stored blob bytes

	Chunks smaller than the threshold, or that do not shrink, are stored plain
	"""
	if method != CompressMethod.plain and len(data) >= threshold:
		payload = Compressor.create(method).compress(data)
		if len(payload) < len(data):
			return _BLOB_MAGIC + bytes([_METHOD_CODES[method]]) + payload
	return _BLOB_MAGIC + bytes([_METHOD_CODES[CompressMethod.plain]]) + data


def decode_chunk_blob(blob: bytes, chunk_id: str) -> bytes:
	if len(blob) < _HEADER_LEN or blob[:len(_BLOB_MAGIC)] != _BLOB_MAGIC:
		raise IntegrityError(chunk_id, 'bad blob header')
	method = _CODE_METHODS.get(blob[len(_BLOB_MAGIC)])
	if method is None:
		raise IntegrityError(chunk_id, 'unknown compress method code {}'.format(blob[len(_BLOB_MAGIC)]))
	try:
		return Compressor.create(method).decompress(blob[_HEADER_LEN:])
	except ImportError:
		raise
	except Exception as e:
		raise IntegrityError(chunk_id, 'cannot decompress blob ({}): {}'.format(method.name, e)) from e
