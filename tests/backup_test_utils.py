import collections
import os
import random
import threading
import time
from pathlib import Path
from typing import Dict, Iterator, Optional, Callable, List, Type, Any

from chunkvault.backend.base import BlobBackend, BlobStat
from chunkvault.config.config import Config
from chunkvault.exceptions import BlobNotFound, BackendError


class _Injection:
	def __init__(self, op: str, key_prefix: str, times: int, error_cls: Type[BackendError]):
		self.op = op
		self.key_prefix = key_prefix
		self.times = times
		self.error_cls = error_cls


class MemoryBackend(BlobBackend):
	"""
	An in-memory blob store that counts every call, and fails on demand
	"""

	def __init__(self, name: str = 'test'):
		self.name = name
		self.blobs: Dict[str, bytes] = {}
		self.mtimes: Dict[str, int] = {}
		self.calls: Dict[str, int] = collections.Counter()
		self.put_keys: List[str] = []
		self.hooks: List[Callable[[str, str], None]] = []
		self.__injections: List[_Injection] = []
		self.__lock = threading.Lock()

	@property
	def namespace(self) -> str:
		return 'memory://' + self.name

	def inject_failure(self, op: str, error_cls: Type[BackendError], *, times: int = 1, key_prefix: str = ''):
		"""
		Make the next ``times`` calls of ``op`` on keys with the given prefix raise. times < 0: fail forever
		"""
		with self.__lock:
			self.__injections.append(_Injection(op, key_prefix, times, error_cls))

	def clear_failures(self):
		with self.__lock:
			self.__injections.clear()

	def __before(self, op: str, key: str):
		for hook in list(self.hooks):
			hook(op, key)
		with self.__lock:
			self.calls[op] += 1
			for inj in self.__injections:
				if inj.op == op and key.startswith(inj.key_prefix) and inj.times != 0:
					inj.times -= 1
					raise inj.error_cls('injected {} failure on {}'.format(op, key))

	def count_puts(self, key_prefix: str = '') -> int:
		with self.__lock:
			return len([k for k in self.put_keys if k.startswith(key_prefix)])

	def reset_counters(self):
		with self.__lock:
			self.calls.clear()
			self.put_keys.clear()

	def keys(self, prefix: str = '') -> List[str]:
		with self.__lock:
			return sorted(k for k in self.blobs if k.startswith(prefix))

	def exists(self, key: str) -> bool:
		self.__before('exists', key)
		with self.__lock:
			return key in self.blobs

	def put(self, key: str, data: bytes):
		self.__before('put', key)
		with self.__lock:
			self.blobs[key] = bytes(data)
			self.mtimes[key] = time.time_ns()
			self.put_keys.append(key)

	def get(self, key: str) -> bytes:
		self.__before('get', key)
		with self.__lock:
			if key not in self.blobs:
				raise BlobNotFound(key)
			return self.blobs[key]

	def delete(self, key: str):
		self.__before('delete', key)
		with self.__lock:
			self.blobs.pop(key, None)
			self.mtimes.pop(key, None)

	def list_blobs(self, prefix: str = '') -> Iterator[BlobStat]:
		self.__before('list', prefix)
		with self.__lock:
			items = [BlobStat(k, len(v), self.mtimes[k]) for k, v in sorted(self.blobs.items()) if k.startswith(prefix)]
		return iter(items)


def create_test_config(root: Path, **overrides: Any) -> Config:
	"""
	A config with everything under the given directory, small chunks and instant retries
	"""
	data = {
		'storage_root': str(root / 'cv_files'),
		'concurrency': 2,
		'backup': {
			'source_root': str(root / 'source'),
			'hash_method': 'sha256',
			'compress_method': 'zstd',
			'chunk_min_size': '2KiB',
			'chunk_avg_size': '8KiB',
			'chunk_max_size': '32KiB',
		},
		'backend': {
			'type': 'local',
			'local_root': str(root / 'remote'),
			'max_concurrency': 4,
		},
		'retry': {
			'max_attempts': 4,
			'base_delay': '0s',
			'max_delay': '0s',
		},
		'gc': {
			'grace_period': '0s',
		},
	}
	for path, value in overrides.items():
		node = data
		parts = path.split('__')
		for part in parts[:-1]:
			node = node.setdefault(part, {})
		node[parts[-1]] = value
	return Config.deserialize(data)


def write_random_file(path: Path, size: int, rnd: random.Random, *, mtime: Optional[float] = None) -> bytes:
	data = rnd.randbytes(size)
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_bytes(data)
	if mtime is not None:
		os.utime(path, (mtime, mtime))
	return data
