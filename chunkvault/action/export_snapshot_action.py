import dataclasses
import os
import threading
import time
from pathlib import Path
from typing import Optional, Union, List, Tuple

from chunkvault.action import RepositoryAction
from chunkvault.action.get_snapshot_action import parse_snapshot_ref, load_snapshot
from chunkvault.action.helpers.repository import Repository
from chunkvault.backend.base import chunk_key
from chunkvault.compressors import decode_chunk_blob
from chunkvault.exceptions import SnapshotPathNotFound, IntegrityError
from chunkvault.types.hash_method import HashMethod
from chunkvault.types.manifest import FileEntry, DirEntry, SymlinkEntry, Entry, iter_entries
from chunkvault.utils import file_utils, hash_utils
from chunkvault.utils.thread_pool import FailFastThreadPool


@dataclasses.dataclass
class ExportResult:
	snapshot_id: int
	output_path: Path
	file_count: int = 0
	dir_count: int = 0
	symlink_count: int = 0
	bytes_written: int = 0
	cost_sec: float = 0


class ExportSnapshotAction(RepositoryAction[ExportResult]):
	"""
	Restore a snapshot, or a sub-path of it, into a directory.
	Every chunk is checked against its id before it's written
	"""

	def __init__(
			self, snapshot_ref: Union[int, str], output_path: Path, *,
			sub_path: Optional[str] = None,
			overwrite: bool = False,
			**kwargs,
	):
		super().__init__(**kwargs)
		self.snapshot_ref = parse_snapshot_ref(snapshot_ref)
		self.output_path = output_path
		self.sub_path = sub_path.strip('/') if sub_path else None
		self.overwrite = overwrite
		self.__result_lock = threading.Lock()

	def is_interruptable(self) -> bool:
		return True

	@classmethod
	def __set_attrs(cls, entry: Entry, path: Path):
		# reference: tarfile.TarFile.extractall, tarfile.TarFile._extract_member
		is_link = isinstance(entry, SymlinkEntry)
		if not is_link:
			os.chmod(path, entry.mode)

		times_ns = (time.time_ns(), entry.mtime_ns)  # (atime, mtime)
		if is_link:
			if os.utime in os.supports_follow_symlinks:
				os.utime(path, ns=times_ns, follow_symlinks=False)
		else:
			os.utime(path, ns=times_ns)

	def __fetch_chunk(self, repo: Repository, hash_method: HashMethod, chunk_id: str) -> bytes:
		key = chunk_key(chunk_id)
		blob = repo.retry_policy.call(lambda: repo.backend.get(key), 'get {}'.format(key))
		data = decode_chunk_blob(blob, chunk_id)
		if (actual := hash_utils.calc_chunk_id(data, hash_method)) != chunk_id:
			raise IntegrityError(chunk_id, 'stored content hashes to {}'.format(actual))
		return data

	def __write_file(self, repo: Repository, hash_method: HashMethod, entry: FileEntry, path: Path, result: ExportResult):
		temp_path = path.parent / '.{}.{}.restoring'.format(path.name, threading.get_ident())
		written = 0
		try:
			with open(temp_path, 'wb') as f:
				for chunk_id in entry.chunk_ids:
					self._check_interrupted()
					data = self.__fetch_chunk(repo, hash_method, chunk_id)
					f.write(data)
					written += len(data)
			if written != entry.size:
				raise IntegrityError(entry.chunk_ids[-1] if entry.chunk_ids else '-', 'file {} has {} bytes, expected {}'.format(path, written, entry.size))
			os.replace(temp_path, path)
		except BaseException:
			temp_path.unlink(missing_ok=True)
			raise
		self.__set_attrs(entry, path)
		with self.__result_lock:
			result.file_count += 1
			result.bytes_written += written

	def __prepare_target(self, path: Path):
		if os.path.lexists(path):
			if not self.overwrite:
				raise FileExistsError('{} already exists'.format(path))
			file_utils.rm_rf(path)

	def run(self) -> ExportResult:
		start_time = time.time()
		with self._open_repository() as repo:
			manifest = load_snapshot(repo, self.snapshot_ref)
			result = ExportResult(snapshot_id=manifest.snapshot_id, output_path=self.output_path)

			target: Optional[Entry] = manifest.root
			if self.sub_path:
				target = manifest.find_entry(self.sub_path)
				if target is None:
					raise SnapshotPathNotFound(manifest.snapshot_id, self.sub_path)

			# (path to write, entry) pairs, parents before children
			items: List[Tuple[Path, Entry]] = []
			if isinstance(target, DirEntry):
				base = self.output_path
				base.mkdir(parents=True, exist_ok=True)
				for rel_path, entry in iter_entries(target):
					items.append((base / rel_path, entry))
			else:
				self.output_path.mkdir(parents=True, exist_ok=True)
				items.append((self.output_path / target.name, target))

			self.logger.info('Restoring snapshot {} ({}) to {}, {} entries'.format(
				manifest.snapshot_id, repr(self.sub_path) if self.sub_path else 'everything', self.output_path, len(items),
			))
			dirs: List[Tuple[Path, DirEntry]] = []
			with FailFastThreadPool(name='restore', max_workers=self.config.backend.max_concurrency) as pool:
				for path, entry in items:
					self._check_interrupted()
					if isinstance(entry, DirEntry):
						if not path.is_dir() or path.is_symlink():
							self.__prepare_target(path)
							path.mkdir()
						dirs.append((path, entry))
						result.dir_count += 1
					elif isinstance(entry, SymlinkEntry):
						self.__prepare_target(path)
						os.symlink(entry.target, path)
						self.__set_attrs(entry, path)
						result.symlink_count += 1
					elif isinstance(entry, FileEntry):
						self.__prepare_target(path)
						pool.submit(self.__write_file, repo, manifest.hash_method, entry, path, result)
					else:
						raise TypeError('unknown entry type {}'.format(type(entry)))

			# children first, or writing them would touch the mtime of the directory again
			for path, entry in reversed(dirs):
				self.__set_attrs(entry, path)
			if isinstance(target, DirEntry) and target is manifest.root:
				self.__set_attrs(target, self.output_path)

		result.cost_sec = time.time() - start_time
		self.logger.info('Restored {} files, {} dirs, {} symlinks, {} bytes in {:.2f}s'.format(
			result.file_count, result.dir_count, result.symlink_count, result.bytes_written, result.cost_sec,
		))
		return result
