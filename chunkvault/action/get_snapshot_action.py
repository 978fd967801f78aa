from typing import Union

from chunkvault.action import RepositoryAction
from chunkvault.action.helpers.repository import Repository
from chunkvault.exceptions import SnapshotNotFound
from chunkvault.types.manifest import Manifest

LATEST = 'latest'


def parse_snapshot_ref(s: Union[str, int]) -> Union[int, str]:
	"""
	A snapshot reference is a positive snapshot id, or "latest" for the head snapshot
	"""
	if isinstance(s, int):
		ref = s
	elif s.strip().lower() in (LATEST, 'head'):
		return LATEST
	else:
		try:
			ref = int(s.strip().lstrip('#'))
		except ValueError:
			raise ValueError('bad snapshot reference {!r}, should be a snapshot id or {!r}'.format(s, LATEST)) from None
	if ref <= 0:
		raise ValueError('snapshot id should be positive, got {}'.format(ref))
	return ref


def load_snapshot(repo: Repository, snapshot_ref: Union[int, str]) -> Manifest:
	head_id = repo.manifests.get_head_id()
	if snapshot_ref == LATEST:
		if head_id is None:
			raise SnapshotNotFound(None)
		return repo.manifests.load(head_id)
	if head_id is None or snapshot_ref > head_id:
		raise SnapshotNotFound(snapshot_ref)
	return repo.manifests.load(snapshot_ref)


class GetSnapshotAction(RepositoryAction[Manifest]):
	def __init__(self, snapshot_ref: Union[int, str], **kwargs):
		super().__init__(**kwargs)
		self.snapshot_ref = parse_snapshot_ref(snapshot_ref)

	def run(self) -> Manifest:
		with self._open_repository() as repo:
			return load_snapshot(repo, self.snapshot_ref)
