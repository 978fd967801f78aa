import threading
from typing import Set, Iterable, Optional, Callable

from chunkvault import logger
from chunkvault.action.helpers.repository import Repository
from chunkvault.backend.base import chunk_key
from chunkvault.compressors import CompressMethod, encode_chunk_blob, decode_chunk_blob
from chunkvault.exceptions import IntegrityError, BackupCancelled
from chunkvault.types.backup_result import BackupStats
from chunkvault.types.chunk import Chunk, ChunkId
from chunkvault.types.hash_method import HashMethod
from chunkvault.utils import hash_utils, collection_utils
from chunkvault.utils.retry_utils import RetryPolicy
from chunkvault.utils.thread_pool import FailFastThreadPool


class ChunkClaimRegistry:
	"""
	Chunk ids already taken care of in the current run. The first claimer of an id is the only one
	that checks and uploads it
	"""

	def __init__(self):
		self.__lock = threading.Lock()
		self.__claimed: Set[ChunkId] = set()

	def claim(self, chunk_id: ChunkId) -> bool:
		"""
		:return: True if the caller is the first one claiming the id
		"""
		with self.__lock:
			if chunk_id in self.__claimed:
				return False
			self.__claimed.add(chunk_id)
			return True

	def is_claimed(self, chunk_id: ChunkId) -> bool:
		with self.__lock:
			return chunk_id in self.__claimed

	def __len__(self) -> int:
		with self.__lock:
			return len(self.__claimed)


class ChunkUploader:
	"""
	Makes sure the chunks given to it exist in the backend, with at most one existence check and
	one put per distinct chunk id in a run.

	Backend calls run on a bounded pool, its size is the backpressure towards the backend.
	:meth:`submit` blocks while the pool is full.
	A chunk is marked in the dedup index only after the backend confirmed it
	"""

	def __init__(
			self, repo: Repository, *,
			hash_method: HashMethod,
			compress_method: CompressMethod,
			compress_threshold: int,
			max_workers: int,
			stats: BackupStats,
			retry_policy: RetryPolicy,
			trust_index: bool = True,
			verify_uploads: bool = False,
			dry_run: bool = False,
			interrupt_event: Optional[threading.Event] = None,
			on_retry_begin: Optional[Callable[[], None]] = None,
			on_retry_end: Optional[Callable[[], None]] = None,
	):
		self.logger = logger.get()
		self.repo = repo
		self.hash_method = hash_method
		self.compress_method = compress_method
		self.compress_threshold = compress_threshold
		self.max_workers = max_workers
		self.stats = stats
		self.retry_policy = retry_policy
		self.trust_index = trust_index
		self.verify_uploads = verify_uploads
		self.dry_run = dry_run
		self.registry = ChunkClaimRegistry()
		self.__interrupt_event = interrupt_event or threading.Event()
		self.__on_retry_begin = on_retry_begin
		self.__on_retry_end = on_retry_end
		self.__pool: Optional[FailFastThreadPool] = None

	def __enter__(self) -> 'ChunkUploader':
		self.__pool = FailFastThreadPool(name='uploader', max_workers=self.max_workers)
		self.__pool.__enter__()
		return self

	def __exit__(self, exc_type, exc_val, exc_tb):
		pool, self.__pool = self.__pool, None
		return pool.__exit__(exc_type, exc_val, exc_tb)

	def __call(self, func, what: str):
		return self.retry_policy.call(func, what, on_retry_begin=self.__on_retry_begin, on_retry_end=self.__on_retry_end)

	def __check_interrupted(self):
		if self.__interrupt_event.is_set():
			raise BackupCancelled()

	def __exists(self, chunk_id: ChunkId) -> bool:
		key = chunk_key(chunk_id)
		return self.__call(lambda: self.repo.backend.exists(key), 'exists {}'.format(key))

	# ============================== Confirmation ==============================

	def confirm_present(self, chunk_ids: Iterable[ChunkId]) -> Set[ChunkId]:
		"""
		Find out which of the given chunks exist in the backend, or will exist once the uploads of this
		run finish. Chunks already claimed in this run count as present, then the index is asked, then
		the backend for the rest. The confirmed ones are claimed for this run

		:return: the chunk ids confirmed present
		"""
		chunk_ids = collection_utils.deduplicated_list(chunk_ids)
		in_run: Set[ChunkId] = {cid for cid in chunk_ids if self.registry.is_claimed(cid)}
		unknown = [cid for cid in chunk_ids if cid not in in_run]
		known: Set[ChunkId] = self.repo.index.lookup_many(unknown) if self.trust_index else set()
		present: Set[ChunkId] = in_run.union(known)
		present_lock = threading.Lock()
		self.stats.add(chunks_run_hit=len(in_run), chunks_index_hit=len(known), chunks_total=len(in_run) + len(known))

		def check(cid: ChunkId):
			self.__check_interrupted()
			if self.__exists(cid):
				self.repo.index.mark_present(cid)
				self.stats.add(chunks_remote_hit=1, chunks_total=1)
				with present_lock:
					present.add(cid)

		with FailFastThreadPool(name='dedup', max_workers=self.max_workers) as pool:
			for chunk_id in unknown:
				if chunk_id not in known:
					pool.submit(check, chunk_id)

		for chunk_id in present:
			self.registry.claim(chunk_id)
		self.logger.debug('Confirmed {} / {} chunks present, {} handled in this run, {} from the index'.format(len(present), len(chunk_ids), len(in_run), len(known)))
		return present

	# ============================== Uploading ==============================

	def submit(self, chunk: Chunk):
		"""
		Make sure the chunk ends up in the backend. Thread safe. Returns when the chunk is handled,
		or queued for the upload pool
		"""
		if self.__pool is None:
			raise RuntimeError('uploader is not started')
		self.stats.add(chunks_total=1)
		if not self.registry.claim(chunk.chunk_id):
			self.stats.add(chunks_run_hit=1)
			return
		if self.trust_index and self.repo.index.lookup(chunk.chunk_id):
			self.stats.add(chunks_index_hit=1)
			return
		self.__pool.submit(self.__upload, chunk.chunk_id, chunk.data)

	def wait(self):
		if self.__pool is not None:
			self.__pool.wait_all()

	def __upload(self, chunk_id: ChunkId, data: bytes):
		self.__check_interrupted()
		key = chunk_key(chunk_id)
		if self.__exists(chunk_id):
			self.repo.index.mark_present(chunk_id, len(data))
			self.stats.add(chunks_remote_hit=1)
			return

		blob = encode_chunk_blob(data, self.compress_method, threshold=self.compress_threshold)
		if self.dry_run:
			self.stats.add(chunks_uploaded=1, bytes_uploaded=len(blob))
			return

		self.__call(lambda: self.repo.backend.put(key, blob), 'put {}'.format(key))
		if self.verify_uploads:
			self.__verify_uploaded(chunk_id, key)
		self.repo.index.mark_present(chunk_id, len(data))
		self.stats.add(chunks_uploaded=1, bytes_uploaded=len(blob))

	def __verify_uploaded(self, chunk_id: ChunkId, key: str):
		stored = self.__call(lambda: self.repo.backend.get(key), 'get {}'.format(key))
		actual = hash_utils.calc_chunk_id(decode_chunk_blob(stored, chunk_id), self.hash_method)
		if actual != chunk_id:
			raise IntegrityError(chunk_id, 'uploaded content hashes to {}'.format(actual))

