from typing import List, Optional

from chunkvault.action import RepositoryAction
from chunkvault.exceptions import SnapshotNotFound
from chunkvault.types.snapshot_info import SnapshotInfo


class ListSnapshotAction(RepositoryAction[List[SnapshotInfo]]):
	def __init__(self, *, limit: Optional[int] = None, **kwargs):
		super().__init__(**kwargs)
		self.limit = limit

	def run(self) -> List[SnapshotInfo]:
		with self._open_repository() as repo:
			head_id = repo.manifests.get_head_id()
			snapshot_ids = repo.manifests.list_snapshot_ids()
			if self.limit is not None:
				snapshot_ids = snapshot_ids[-self.limit:] if self.limit > 0 else []

			infos: List[SnapshotInfo] = []
			for snapshot_id in snapshot_ids:
				try:
					manifest = repo.manifests.load(snapshot_id)
				except SnapshotNotFound:
					continue  # pruned in the meantime
				infos.append(SnapshotInfo.of(manifest, head_id=head_id))
			return infos
