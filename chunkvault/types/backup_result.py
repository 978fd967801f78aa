import dataclasses
import threading
from typing import List, Optional

from chunkvault.types.run_state import RunState


@dataclasses.dataclass(frozen=True)
class SkippedEntry:
	path: str
	reason: str


@dataclasses.dataclass
class BackupStats:
	files_total: int = 0
	files_skipped: int = 0      # unchanged size and mtime, previous chunk ids reused
	files_reprocessed: int = 0  # chunked from content
	files_demoted: int = 0      # planned to skip, but some previous chunk is gone remotely

	chunks_total: int = 0
	chunks_uploaded: int = 0
	chunks_index_hit: int = 0   # known present by the dedup index
	chunks_remote_hit: int = 0  # not in the index, but the backend has it
	chunks_run_hit: int = 0     # already handled earlier in this run

	bytes_read: int = 0
	bytes_uploaded: int = 0     # stored blob bytes, after compression

	def __post_init__(self):
		self.__lock = threading.Lock()

	def add(self, **deltas: int):
		with self.__lock:
			for name, delta in deltas.items():
				setattr(self, name, getattr(self, name) + delta)


@dataclasses.dataclass(frozen=True)
class BackupResult:
	snapshot_id: Optional[int]  # None for dry runs
	previous_id: Optional[int]
	state: RunState
	stats: BackupStats
	skipped_entries: List[SkippedEntry]
	cost_sec: float
	dry_run: bool = False

	@property
	def committed(self) -> bool:
		return self.state == RunState.done and not self.dry_run
