import os
import stat
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple, Callable

from chunkvault.action import RepositoryAction
from chunkvault.action.helpers.chunk_uploader import ChunkUploader
from chunkvault.action.helpers.manifest_builder import ManifestBuilder
from chunkvault.action.helpers.repository import Repository
from chunkvault.action.helpers.snapshot_differ import SnapshotDiffer, DiffAction
from chunkvault.action.helpers.tree_walker import TreeWalker, WalkEntry, EntryKind
from chunkvault.chunker import Chunker
from chunkvault.exceptions import BackupCancelled, BackupRunFailed, ChunkVaultError
from chunkvault.types.backup_result import BackupResult, BackupStats, SkippedEntry
from chunkvault.types.chunk import ChunkId
from chunkvault.types.manifest import FileEntry, Manifest
from chunkvault.types.run_state import RunStateMachine, RunState
from chunkvault.types.units import ByteCount
from chunkvault.utils import misc_utils
from chunkvault.utils.lock_utils import RunLock
from chunkvault.utils.thread_pool import FailFastThreadPool


class _FileChanged(ChunkVaultError):
	pass


class CreateBackupAction(RepositoryAction[BackupResult]):
	"""
	One backup run: walk -> diff -> chunk -> dedup check -> upload -> commit.

The phases overlap: a chunk cut in the chunking phase goes to the upload pool right away, where
its dedup check and upload run while other files are still being chunked. dedup_checking confirms the
chunks reused by unchanged files, files with a missing chunk are chunked again there. uploading
waits for whatever is still in flight.

	The run is all or nothing. Chunks go to the backend first, the manifest is published last,
	so HEAD never points to a snapshot with a missing chunk. A failed or cancelled run leaves HEAD
	untouched, and everything it did upload is reused by the next run
	"""

	def __init__(
			self, *,
			comment: str = '',
			dry_run: bool = False,
			source_path: Optional[Path] = None,
			on_state_change: Optional[Callable[[RunState, RunState], None]] = None,
			**kwargs,
	):
		super().__init__(**kwargs)
		self.comment = comment
		self.dry_run = dry_run
		self.__source_path: Path = source_path or self.config.source_path
		self.__on_state_change = on_state_change

		self.state_machine = RunStateMachine(on_change=self.__handle_state_change)
		self.stats = BackupStats()
		self.__skipped: List[SkippedEntry] = []
		self.__skipped_lock = threading.Lock()
		self.__builder = ManifestBuilder(self.config.backup.hash_method)
		self.__builder_lock = threading.Lock()

	def is_interruptable(self) -> bool:
		return True

	def __handle_state_change(self, old: RunState, new: RunState):
		self.logger.debug('Backup run state {} -> {}'.format(old.name, new.name))
		if self.__on_state_change is not None:
			self.__on_state_change(old, new)

	def __add_skipped(self, path: str, reason: str):
		self.logger.warning('Skipping {!r}: {}'.format(path, reason))
		with self.__skipped_lock:
			self.__skipped.append(SkippedEntry(path, reason))

	def run(self) -> BackupResult:
		self.config.backup.compress_method.value.ensure_lib()
		with RunLock(self.config.run_lock_path):
			with self._open_repository() as repo:
				return self.__run(repo)

	def __run(self, repo: Repository) -> BackupResult:
		start_time = time.time()
		sm = self.state_machine
		retry_policy = repo.retry_policy.with_interrupt_event(self.is_interrupted)
		backup_config = self.config.backup
		previous: Optional[Manifest] = None

		try:
			# ---------------- walking ----------------
			sm.transit(RunState.walking)
			head_id = repo.manifests.get_head_id()
			if head_id is not None:
				previous = repo.manifests.load(head_id)
			walker = TreeWalker(self.__source_path, backup_config.ignore_patterns)
			entries: List[WalkEntry] = []
			for entry in walker.walk():
				self._check_interrupted()
				entries.append(entry)
			for skipped in walker.skipped:
				self.__skipped.append(skipped)
			self.logger.debug('Walked {} entries in {}, ignored {}, skipped {}'.format(len(entries), self.__source_path, walker.ignored_count, len(walker.skipped)))

			# ---------------- diffing ----------------
			sm.transit(RunState.diffing)
			self.__builder.set_root(walker.root_entry.mode, walker.root_entry.mtime_ns)
			differ = SnapshotDiffer(previous, backup_config.hash_method, verify_mode=backup_config.always_rehash)
			skip_files: List[Tuple[WalkEntry, FileEntry]] = []
			reprocess_files: List[WalkEntry] = []
			for entry in entries:
				if entry.kind == EntryKind.directory:
					self.__builder.add_dir(entry.path, entry.mode, entry.mtime_ns)
				elif entry.kind == EntryKind.symlink:
					self.__builder.add_symlink(entry.path, entry.link_target, entry.mtime_ns, entry.mode)
				elif entry.kind == EntryKind.file:
					self.stats.add(files_total=1)
					decision = differ.decide(entry)
					if decision.action == DiffAction.skip:
						skip_files.append((entry, decision.previous))
					else:
						reprocess_files.append(entry)
				else:
					raise AssertionError('unexpected entry kind {!r}'.format(entry.kind))
			self.logger.debug('Diff done, {} files to skip, {} files to reprocess'.format(len(skip_files), len(reprocess_files)))

			uploader = ChunkUploader(
				repo,
				hash_method=backup_config.hash_method,
				compress_method=backup_config.compress_method,
				compress_threshold=backup_config.compress_threshold.value,
				max_workers=self.config.backend.max_concurrency,
				stats=self.stats,
				retry_policy=retry_policy,
				trust_index=self.config.index.trust_index,
				verify_uploads=backup_config.verify_uploads,
				dry_run=self.dry_run,
				interrupt_event=self.is_interrupted,
				on_retry_begin=sm.on_retry_begin,
				on_retry_end=sm.on_retry_end,
			)

			# ---------------- chunking ----------------
			sm.transit(RunState.chunking)
			chunker = Chunker(backup_config.get_chunk_size_bounds(), backup_config.hash_method)
			with uploader:
				self.__chunk_files(chunker, uploader, reprocess_files)

				# ---------------- dedup checking ----------------
				# the chunks of changed files are checked by the uploader as they come,
				# what's left is confirming the chunks reused by unchanged files
				sm.transit(RunState.dedup_checking)
				demoted = self.__check_skipped_files(uploader, skip_files)
				if len(demoted) > 0:
					self.__chunk_files(chunker, uploader, demoted)

				# ---------------- uploading ----------------
				sm.transit(RunState.uploading)
				uploader.wait()
			self._check_interrupted()

			# ---------------- committing ----------------
			sm.transit(RunState.committing)
			snapshot_id = repo.manifests.next_snapshot_id()
			manifest = self.__builder.build(snapshot_id, head_id, comment=self.comment)
			if self.dry_run:
				self.logger.info('Dry run, not committing snapshot {}'.format(snapshot_id))
			else:
				repo.manifests.publish(manifest)
			sm.transit(RunState.done)
		except BackupCancelled:
			failed_at = sm.fail()
			self.logger.warning('Backup run cancelled at state {}, head is unchanged'.format(failed_at.name))
			raise
		except Exception as e:
			failed_at = sm.fail()
			self.logger.error('Backup run failed at state {}: {}'.format(failed_at.name, e))
			raise BackupRunFailed(failed_at, e) from e

		result = BackupResult(
			snapshot_id=None if self.dry_run else manifest.snapshot_id,
			previous_id=head_id,
			state=sm.state,
			stats=self.stats,
			skipped_entries=list(self.__skipped),
			cost_sec=time.time() - start_time,
			dry_run=self.dry_run,
		)
		self.__log_summary(result, manifest)
		return result

	def __chunk_files(self, chunker: Chunker, uploader: ChunkUploader, entries: List[WalkEntry]):
		with FailFastThreadPool(name='hasher', max_workers=self.config.get_effective_concurrency()) as hasher_pool:
			for entry in entries:
				self._check_interrupted()
				hasher_pool.submit(self.__process_file, chunker, uploader, entry)

	def __check_skipped_files(self, uploader: ChunkUploader, skip_files: List[Tuple[WalkEntry, FileEntry]]) -> List[WalkEntry]:
		"""
		Files reusing the previous chunk ids are only fine if all these chunks are still in the backend.
		Files with any missing chunk are demoted to reprocess

		:return: the demoted files
		"""
		chunk_ids: List[ChunkId] = []
		for _, previous in skip_files:
			chunk_ids.extend(previous.chunk_ids)
		present = uploader.confirm_present(chunk_ids)

		demoted: List[WalkEntry] = []
		for entry, previous in skip_files:
			if all(cid in present for cid in previous.chunk_ids):
				self.__builder.add_file(entry.path, entry.size, entry.mtime_ns, entry.mode, previous.chunk_ids)
				self.stats.add(files_skipped=1)
			else:
				self.logger.warning('Some chunk of unchanged file {!r} is missing in the backend, reprocessing it'.format(entry.path))
				demoted.append(entry)
				self.stats.add(files_demoted=1)
		return demoted

	def __process_file(self, chunker: Chunker, uploader: ChunkUploader, entry: WalkEntry):
		full_path = self.__source_path / entry.path
		max_attempts = self.config.backup.volatile_file_retry_count
		for attempt in range(1, max_attempts + 1):
			self._check_interrupted()
			try:
				size, st, chunk_ids = self.__chunk_file_once(chunker, uploader, full_path)
			except _FileChanged as e:
				self.logger.warning('File {!r} changed while being read ({}), attempt {} / {}'.format(entry.path, e, attempt, max_attempts))
				continue
			except FileNotFoundError:
				self.__add_skipped(entry.path, 'vanished before it could be read')
				return
			except OSError as e:
				self.__add_skipped(entry.path, 'cannot read: {}'.format(e))
				return

			with self.__builder_lock:
				self.__builder.add_file(entry.path, size, st.st_mtime_ns, stat.S_IMODE(st.st_mode), chunk_ids)
			self.stats.add(files_reprocessed=1, bytes_read=size)
			return

		self.__add_skipped(entry.path, 'kept changing during {} read attempts'.format(max_attempts))

	def __chunk_file_once(self, chunker: Chunker, uploader: ChunkUploader, full_path: Path) -> Tuple[int, os.stat_result, Tuple[ChunkId, ...]]:
		with open(full_path, 'rb') as f:
			st_before = os.fstat(f.fileno())
			if not stat.S_ISREG(st_before.st_mode):
				raise _FileChanged('no longer a regular file')
			chunk_ids: List[ChunkId] = []
			size = 0
			for chunk in chunker.iter_chunks(f):
				self._check_interrupted()
				misc_utils.assert_true(chunk.offset == size, lambda: 'chunk offset {} != {}'.format(chunk.offset, size))
				chunk_ids.append(chunk.chunk_id)
				size += chunk.size
				uploader.submit(chunk)
			st_after = os.fstat(f.fileno())

		if size != st_before.st_size:
			raise _FileChanged('read {} bytes, but the size was {}'.format(size, st_before.st_size))
		if st_after.st_size != st_before.st_size or st_after.st_mtime_ns != st_before.st_mtime_ns:
			raise _FileChanged('size or mtime changed during the read')
		return size, st_before, tuple(chunk_ids)

	def __log_summary(self, result: BackupResult, manifest: Manifest):
		stats = result.stats
		self.logger.info('Backup {} done in {:.2f}s: snapshot {} (previous {}), {} files, {} skipped by diff, {} reprocessed, {} demoted'.format(
			'dry run' if result.dry_run else 'run', result.cost_sec,
			manifest.snapshot_id, result.previous_id,
			stats.files_total, stats.files_skipped, stats.files_reprocessed, stats.files_demoted,
		))
		self.logger.info('Chunks: {} total, {} uploaded ({}), {} known by index, {} found remotely, {} deduplicated in run'.format(
			stats.chunks_total, stats.chunks_uploaded, ByteCount(stats.bytes_uploaded).auto_str(),
			stats.chunks_index_hit, stats.chunks_remote_hit, stats.chunks_run_hit,
		))
		if len(result.skipped_entries) > 0:
			self.logger.warning('{} entries were skipped: {}'.format(
				len(result.skipped_entries), ', '.join(repr(s.path) for s in result.skipped_entries[:10]),
			))
