import dataclasses
import threading
from typing import Union, List, Dict

from chunkvault.action import RepositoryAction
from chunkvault.action.get_snapshot_action import parse_snapshot_ref, load_snapshot
from chunkvault.backend.base import chunk_key
from chunkvault.compressors import decode_chunk_blob
from chunkvault.exceptions import BlobNotFound, IntegrityError
from chunkvault.types.chunk import ChunkId
from chunkvault.utils import hash_utils
from chunkvault.utils.thread_pool import FailFastThreadPool


@dataclasses.dataclass
class VerifyResult:
	snapshot_id: int
	chunk_count: int = 0
	ok_count: int = 0
	missing: List[ChunkId] = dataclasses.field(default_factory=list)
	corrupted: Dict[ChunkId, str] = dataclasses.field(default_factory=dict)
	affected_files: List[str] = dataclasses.field(default_factory=list)
	deep: bool = False

	@property
	def ok(self) -> bool:
		return len(self.missing) == 0 and len(self.corrupted) == 0


class VerifySnapshotAction(RepositoryAction[VerifyResult]):
	"""
	Check that every chunk a snapshot references is in the backend.
	With deep=True every chunk is also downloaded, decoded and hashed again
	"""

	def __init__(self, snapshot_ref: Union[int, str], *, deep: bool = False, **kwargs):
		super().__init__(**kwargs)
		self.snapshot_ref = parse_snapshot_ref(snapshot_ref)
		self.deep = deep
		self.__lock = threading.Lock()

	def is_interruptable(self) -> bool:
		return True

	def run(self) -> VerifyResult:
		with self._open_repository() as repo:
			manifest = load_snapshot(repo, self.snapshot_ref)
			result = VerifyResult(snapshot_id=manifest.snapshot_id, deep=self.deep)
			chunk_ids = sorted(manifest.all_chunk_ids())
			result.chunk_count = len(chunk_ids)

			def check(cid: ChunkId):
				self._check_interrupted()
				key = chunk_key(cid)
				error = None
				missing = False
				if self.deep:
					try:
						data = decode_chunk_blob(repo.retry_policy.call(lambda: repo.backend.get(key), 'get {}'.format(key)), cid)
					except BlobNotFound:
						missing = True
					except IntegrityError as e:
						error = str(e)
					else:
						if (actual := hash_utils.calc_chunk_id(data, manifest.hash_method)) != cid:
							error = 'content hashes to {}'.format(actual)
				else:
					missing = not repo.retry_policy.call(lambda: repo.backend.exists(key), 'exists {}'.format(key))

				with self.__lock:
					if missing:
						result.missing.append(cid)
					elif error is not None:
						result.corrupted[cid] = error
					else:
						result.ok_count += 1

			with FailFastThreadPool(name='verify', max_workers=self.config.backend.max_concurrency) as pool:
				for chunk_id in chunk_ids:
					pool.submit(check, chunk_id)

			bad = set(result.missing).union(result.corrupted.keys())
			if len(bad) > 0:
				for path, file in manifest.iter_files():
					if any(cid in bad for cid in file.chunk_ids):
						result.affected_files.append(path)
				# the index must not vouch for chunks that are gone
				repo.index.forget(bad)
				self.logger.error('Snapshot {} verification failed: {} missing chunks, {} corrupted chunks, {} affected files'.format(
					manifest.snapshot_id, len(result.missing), len(result.corrupted), len(result.affected_files),
				))
			else:
				self.logger.info('Snapshot {} verified, {} chunks ok ({})'.format(manifest.snapshot_id, result.ok_count, 'deep' if self.deep else 'existence only'))
			result.missing.sort()
			return result
