from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
	from chunkvault.types.run_state import RunState


class ChunkVaultError(Exception):
	pass


# ================================ Backend ================================

class BackendError(ChunkVaultError):
	pass


class TransientBackendError(BackendError):
	"""
	Connectivity, timeout or rate limiting. Retryable
	"""
	pass


class FatalBackendError(BackendError):
	"""
	Authorization, configuration or addressing problem. Never retried
	"""
	pass


class BlobNotFound(BackendError):
	def __init__(self, key: str):
		super().__init__(key)
		self.key = key


# ================================ Source ================================

class SourceReadError(ChunkVaultError):
	def __init__(self, path: str, reason: str):
		super().__init__('{}: {}'.format(path, reason))
		self.path = path
		self.reason = reason


class UnsupportedFileFormat(SourceReadError):
	def __init__(self, path: str, mode: int):
		super().__init__(path, 'unsupported file mode {}'.format(oct(mode)))
		self.mode = mode


# ================================ Data ================================

class IntegrityError(ChunkVaultError):
	def __init__(self, chunk_id: str, msg: str):
		super().__init__('chunk {}: {}'.format(chunk_id, msg))
		self.chunk_id = chunk_id


class SnapshotNotFound(ChunkVaultError):
	def __init__(self, snapshot_id: Optional[int]):
		super().__init__(snapshot_id)
		self.snapshot_id = snapshot_id


class SnapshotPathNotFound(ChunkVaultError):
	def __init__(self, snapshot_id: int, path: str):
		super().__init__(snapshot_id, path)
		self.snapshot_id = snapshot_id
		self.path = path


class BadManifest(ChunkVaultError):
	pass


# ================================ Run ================================

class BackupCancelled(ChunkVaultError):
	pass


class BackupRunFailed(ChunkVaultError):
	def __init__(self, failed_state: 'RunState', cause: BaseException):
		super().__init__('backup run failed at state {}: {}'.format(failed_state.name, cause))
		self.failed_state = failed_state
		self.cause = cause


class RepositoryLocked(ChunkVaultError):
	def __init__(self, lock_file: str, owner: str):
		super().__init__('{} is held by {}'.format(lock_file, owner))
		self.lock_file = lock_file
		self.owner = owner


class HeadMoved(ChunkVaultError):
	"""
	Another run committed a snapshot while this one was running
	"""
	def __init__(self, expected: Optional[int], actual: Optional[int]):
		super().__init__('head moved from {} to {}'.format(expected, actual))
		self.expected = expected
		self.actual = actual
