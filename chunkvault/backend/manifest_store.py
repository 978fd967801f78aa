import re
from typing import Optional, List, Callable, TypeVar

from chunkvault import constants, logger
from chunkvault.backend.base import BlobBackend
from chunkvault.exceptions import BlobNotFound, SnapshotNotFound, BadManifest, HeadMoved
from chunkvault.types.manifest import Manifest
from chunkvault.utils.retry_utils import RetryPolicy

_T = TypeVar('_T')
_SNAPSHOT_KEY_RE = re.compile(re.escape(constants.SNAPSHOT_KEY_PREFIX) + r'(\d+)\.json')


def snapshot_key(snapshot_id: int) -> str:
	return f'{constants.SNAPSHOT_KEY_PREFIX}{snapshot_id:08d}.json'


class ManifestStore:
	"""
	The snapshot log in the backend: one immutable manifest blob per snapshot id, plus the HEAD blob
	holding the id of the latest committed snapshot.

	A manifest only counts as committed when its id is not greater than HEAD. A manifest blob left
	above HEAD by an interrupted commit is invisible, and gets overwritten by the next commit
	"""

	def __init__(self, backend: BlobBackend, retry_policy: Optional[RetryPolicy] = None):
		self.backend = backend
		self.retry_policy = retry_policy or RetryPolicy(max_attempts=1, base_delay=0, max_delay=0)
		self.logger = logger.get()

	def __call(self, func: Callable[[], _T], what: str) -> _T:
		return self.retry_policy.call(func, what)

	def get_head_id(self) -> Optional[int]:
		try:
			buf = self.__call(lambda: self.backend.get(constants.HEAD_KEY), 'get head')
		except BlobNotFound:
			return None
		try:
			return int(buf.decode('utf8').strip())
		except ValueError as e:
			raise BadManifest('bad head pointer {!r}'.format(buf[:32])) from e

	def load(self, snapshot_id: int) -> Manifest:
		key = snapshot_key(snapshot_id)
		try:
			buf = self.__call(lambda: self.backend.get(key), 'get manifest {}'.format(snapshot_id))
		except BlobNotFound:
			raise SnapshotNotFound(snapshot_id) from None
		manifest = Manifest.from_bytes(buf)
		if manifest.snapshot_id != snapshot_id:
			raise BadManifest('manifest {} claims to be snapshot {}'.format(key, manifest.snapshot_id))
		return manifest

	def load_head(self) -> Optional[Manifest]:
		head_id = self.get_head_id()
		if head_id is None:
			return None
		return self.load(head_id)

	def next_snapshot_id(self) -> int:
		head_id = self.get_head_id()
		return 1 if head_id is None else head_id + 1

	def publish(self, manifest: Manifest):
		"""
		Commit the manifest: write the manifest blob, then move HEAD to it with a single put.
		The caller must have confirmed every referenced chunk in the backend before calling this
		"""
		head_id = self.get_head_id()
		if head_id != manifest.previous_id:
			raise HeadMoved(manifest.previous_id, head_id)
		expected_id = 1 if head_id is None else head_id + 1
		if manifest.snapshot_id != expected_id:
			raise ValueError('snapshot id should be {}, got {}'.format(expected_id, manifest.snapshot_id))

		data = manifest.to_bytes()
		self.__call(lambda: self.backend.put(snapshot_key(manifest.snapshot_id), data), 'put manifest {}'.format(manifest.snapshot_id))
		self.__call(lambda: self.backend.put(constants.HEAD_KEY, str(manifest.snapshot_id).encode('utf8')), 'put head')
		self.logger.debug('Published manifest {} ({} bytes)'.format(manifest.snapshot_id, len(data)))

	def list_snapshot_ids(self) -> List[int]:
		"""
		Ids of all committed snapshots still in the log, ascending
		"""
		head_id = self.get_head_id()
		if head_id is None:
			return []
		blobs = self.__call(lambda: list(self.backend.list_blobs(constants.SNAPSHOT_KEY_PREFIX)), 'list manifests')
		ids = []
		for blob in blobs:
			if (match := _SNAPSHOT_KEY_RE.fullmatch(blob.key)) is not None:
				snapshot_id = int(match.group(1))
				if snapshot_id <= head_id:
					ids.append(snapshot_id)
		ids.sort()
		return ids

	def delete(self, snapshot_id: int):
		if snapshot_id == self.get_head_id():
			raise ValueError('cannot delete the head snapshot {}'.format(snapshot_id))
		self.__call(lambda: self.backend.delete(snapshot_key(snapshot_id)), 'delete manifest {}'.format(snapshot_id))
