import dataclasses
import datetime
from typing import Optional

from chunkvault.types.manifest import Manifest, ManifestStats


@dataclasses.dataclass(frozen=True)
class SnapshotInfo:
	snapshot_id: int
	timestamp_ns: int
	previous_id: Optional[int]
	comment: str
	stats: ManifestStats
	is_head: bool

	@property
	def date(self) -> datetime.datetime:
		return datetime.datetime.fromtimestamp(self.timestamp_ns / 1e9)

	@property
	def date_str(self) -> str:
		return self.date.strftime('%Y-%m-%d %H:%M:%S')

	@classmethod
	def of(cls, manifest: Manifest, *, head_id: Optional[int]) -> 'SnapshotInfo':
		return SnapshotInfo(
			snapshot_id=manifest.snapshot_id,
			timestamp_ns=manifest.timestamp_ns,
			previous_id=manifest.previous_id,
			comment=manifest.comment,
			stats=manifest.stats,
			is_head=manifest.snapshot_id == head_id,
		)
