import dataclasses
import enum
from typing import Optional, Dict

from chunkvault.action.helpers.tree_walker import WalkEntry, EntryKind
from chunkvault.types.hash_method import HashMethod
from chunkvault.types.manifest import Manifest, FileEntry


class DiffAction(enum.Enum):
	skip = enum.auto()       # reuse the chunk ids of the previous snapshot, without reading the file
	reprocess = enum.auto()  # read, chunk and address the file


@dataclasses.dataclass(frozen=True)
class DiffDecision:
	action: DiffAction
	previous: Optional[FileEntry] = None


class SnapshotDiffer:
	"""
	Decides which files need to be read again, by comparing the walk with the previous snapshot.

	A file is skipped iff the previous snapshot has a file at the same path with the same size and mtime.
	A content change that keeps both is not detected, that's the accepted price for not reading every
	file on every run. With ``verify_mode`` every file is reprocessed
	"""

	def __init__(self, previous: Optional[Manifest], hash_method: HashMethod, *, verify_mode: bool = False):
		self.verify_mode = verify_mode
		self.__previous_files: Dict[str, FileEntry] = {}
		# chunk ids made by another hash method cannot be reused
		if previous is not None and previous.hash_method == hash_method:
			self.__previous_files.update(previous.iter_files())

	@property
	def previous_file_count(self) -> int:
		return len(self.__previous_files)

	def decide(self, entry: WalkEntry) -> DiffDecision:
		if entry.kind != EntryKind.file:
			raise ValueError('only files can be diffed, got {} {!r}'.format(entry.kind.name, entry.path))
		if self.verify_mode:
			return DiffDecision(DiffAction.reprocess)

		previous = self.__previous_files.get(entry.path)
		if previous is not None and previous.size == entry.size and previous.mtime_ns == entry.mtime_ns:
			return DiffDecision(DiffAction.skip, previous)
		return DiffDecision(DiffAction.reprocess, previous)
