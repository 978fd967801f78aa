import dataclasses
import time
from typing import Set, List

from chunkvault import constants
from chunkvault.action import RepositoryAction
from chunkvault.backend.base import chunk_id_from_key, BlobStat
from chunkvault.types.chunk import ChunkId
from chunkvault.types.units import ByteCount
from chunkvault.utils import log_utils, hash_utils
from chunkvault.utils.lock_utils import RunLock


@dataclasses.dataclass
class GarbageCollectResult:
	snapshot_count: int = 0
	reachable_count: int = 0
	remote_chunk_count: int = 0
	deleted_count: int = 0
	deleted_size: int = 0
	grace_kept_count: int = 0  # unreachable, but too young to delete
	dry_run: bool = False


class CollectGarbageAction(RepositoryAction[GarbageCollectResult]):
	"""
	Delete remote chunks that no snapshot in the log references.

	Runs under the run lock, so no backup from this storage root is in progress. A chunk uploaded by a
	run elsewhere is only referenced once that run commits, so unreachable chunks younger than the grace
	period are kept
	"""

	def __init__(self, *, dry_run: bool = False, **kwargs):
		super().__init__(**kwargs)
		self.dry_run = dry_run

	def is_interruptable(self) -> bool:
		return True

	def run(self) -> GarbageCollectResult:
		with RunLock(self.config.run_lock_path):
			with self._open_repository() as repo:
				return self.__run(repo)

	def __run(self, repo) -> GarbageCollectResult:
		result = GarbageCollectResult(dry_run=self.dry_run)
		# list chunks before reading the manifests: a chunk uploaded after the listing is never a candidate
		remote_chunks: List[BlobStat] = repo.retry_policy.call(lambda: list(repo.backend.list_blobs(constants.CHUNK_KEY_PREFIX)), 'list chunks')
		result.remote_chunk_count = len(remote_chunks)

		reachable: Set[ChunkId] = set()
		for snapshot_id in repo.manifests.list_snapshot_ids():
			self._check_interrupted()
			reachable.update(repo.manifests.load(snapshot_id).all_chunk_ids())
			result.snapshot_count += 1
		result.reachable_count = len(reachable)

		grace_ns = int(self.config.gc.grace_period.value_nano)
		now = time.time_ns()
		to_delete: List[BlobStat] = []
		for blob in remote_chunks:
			chunk_id = chunk_id_from_key(blob.key)
			if not hash_utils.is_valid_chunk_id(chunk_id, self.config.backup.hash_method):
				self.logger.warning('Ignoring unknown blob {!r} in the chunk area'.format(blob.key))
				continue
			if chunk_id in reachable:
				continue
			if now - blob.mtime_ns < grace_ns:
				result.grace_kept_count += 1
				continue
			to_delete.append(blob)

		if self.dry_run:
			result.deleted_count = len(to_delete)
			result.deleted_size = sum(b.size for b in to_delete)
			self.logger.info('Dry run, {} / {} chunks ({}) would be deleted, {} kept by the grace period'.format(
				result.deleted_count, result.remote_chunk_count, ByteCount(result.deleted_size).auto_str(), result.grace_kept_count,
			))
			return result

		with log_utils.open_file_logger('gc', self.config.storage_path) as gc_logger:
			gc_logger.info('Garbage collection started, {} remote chunks, {} reachable, {} to delete'.format(len(remote_chunks), len(reachable), len(to_delete)))
			for blob in to_delete:
				self._check_interrupted()
				# forget first: an index entry must never outlive its chunk
				repo.index.forget([chunk_id_from_key(blob.key)])
				repo.retry_policy.call(lambda: repo.backend.delete(blob.key), 'delete {}'.format(blob.key))
				gc_logger.info('Deleted chunk {} ({} bytes)'.format(blob.key, blob.size))
				result.deleted_count += 1
				result.deleted_size += blob.size

		# entries of chunks that are gone for whatever reason
		remote_ids = {chunk_id_from_key(b.key) for b in remote_chunks}
		stale = [cid for cid in repo.index.iter_ids() if cid not in remote_ids]
		if len(stale) > 0:
			repo.index.forget(stale)

		self.logger.info('Garbage collected {} / {} chunks ({}), {} snapshots, {} reachable chunks, {} kept by the grace period, {} stale index entries dropped'.format(
			result.deleted_count, result.remote_chunk_count, ByteCount(result.deleted_size).auto_str(),
			result.snapshot_count, result.reachable_count, result.grace_kept_count, len(stale),
		))
		return result
