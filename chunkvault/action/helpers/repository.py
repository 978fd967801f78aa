import contextlib
from typing import Optional, Generator

from chunkvault.backend.backend_factory import create_backend
from chunkvault.backend.base import BlobBackend
from chunkvault.backend.manifest_store import ManifestStore
from chunkvault.config.config import Config
from chunkvault.db.dedup_index import DedupIndex
from chunkvault.utils.retry_utils import RetryPolicy


class Repository:
	"""
	Everything an action needs to work on one backup destination: the backend, the manifest log
	in it, and the local dedup index bound to it
	"""

	def __init__(self, backend: BlobBackend, index: DedupIndex, retry_policy: RetryPolicy):
		self.backend = backend
		self.index = index
		self.retry_policy = retry_policy
		self.manifests = ManifestStore(backend, retry_policy)

	@classmethod
	def create_index(cls, config: Config, backend: BlobBackend) -> DedupIndex:
		reconfirm_after = config.index.reconfirm_after
		return DedupIndex(
			config.index_db_path,
			hash_method=config.backup.hash_method,
			namespace=backend.namespace,
			reconfirm_after_sec=reconfirm_after.value if reconfirm_after is not None else None,
		)

	@classmethod
	@contextlib.contextmanager
	def open(cls, config: Config, *, backend: Optional[BlobBackend] = None) -> Generator['Repository', None, None]:
		"""
		The backend is closed on exit only if it was created here
		"""
		own_backend = backend is None
		if backend is None:
			backend = create_backend(config.backend)
		try:
			with cls.create_index(config, backend) as index:
				yield Repository(backend, index, RetryPolicy.from_config(config.retry))
		finally:
			if own_backend:
				backend.close()
