import os
from pathlib import Path
from typing import Iterator

from chunkvault.backend.base import BlobBackend, BlobStat
from chunkvault.exceptions import BlobNotFound, FatalBackendError, TransientBackendError
from chunkvault.utils import file_utils


class LocalDirectoryBackend(BlobBackend):
	"""
	A directory used as the blob store. Keys are posix relative paths inside the directory
	"""

	def __init__(self, root: Path):
		self.root = root.absolute()

	@property
	def namespace(self) -> str:
		return 'file://' + self.root.as_posix()

	def __path_of(self, key: str) -> Path:
		if key == '' or key.startswith('/') or '..' in key.split('/'):
			raise FatalBackendError('bad blob key {!r}'.format(key))
		return self.root / key

	@classmethod
	def __wrap_os_error(cls, e: OSError, what: str) -> Exception:
		if isinstance(e, PermissionError):
			return FatalBackendError('{} failed: {}'.format(what, e))
		return TransientBackendError('{} failed: {}'.format(what, e))

	def exists(self, key: str) -> bool:
		try:
			return self.__path_of(key).is_file()
		except OSError as e:
			raise self.__wrap_os_error(e, 'exists {}'.format(key)) from e

	def put(self, key: str, data: bytes):
		path = self.__path_of(key)
		try:
			path.parent.mkdir(parents=True, exist_ok=True)
			file_utils.write_file_atomic(path, data)
		except OSError as e:
			raise self.__wrap_os_error(e, 'put {}'.format(key)) from e

	def get(self, key: str) -> bytes:
		path = self.__path_of(key)
		try:
			with open(path, 'rb') as f:
				return f.read()
		except FileNotFoundError:
			raise BlobNotFound(key) from None
		except OSError as e:
			raise self.__wrap_os_error(e, 'get {}'.format(key)) from e

	def delete(self, key: str):
		try:
			self.__path_of(key).unlink(missing_ok=True)
		except OSError as e:
			raise self.__wrap_os_error(e, 'delete {}'.format(key)) from e

	def list_blobs(self, prefix: str = '') -> Iterator[BlobStat]:
		if not self.root.is_dir():
			return
		try:
			for dir_path, dir_names, file_names in os.walk(self.root):
				dir_names.sort()
				for file_name in sorted(file_names):
					if file_name.startswith('.') and file_name.endswith('.tmp'):
						continue
					full_path = Path(dir_path) / file_name
					key = full_path.relative_to(self.root).as_posix()
					if not key.startswith(prefix):
						continue
					try:
						st = full_path.stat()
					except FileNotFoundError:
						continue  # deleted in the meantime
					yield BlobStat(key=key, size=st.st_size, mtime_ns=st.st_mtime_ns)
		except OSError as e:
			raise self.__wrap_os_error(e, 'list {}'.format(prefix)) from e
