import json
import os
import socket
import time
from pathlib import Path
from typing import Optional

import psutil

from chunkvault import logger
from chunkvault.exceptions import RepositoryLocked


class RunLock:
	"""
	Exclusive lock of a storage root, held by backup runs and garbage collection.
	The lock file contains the pid and the hostname of the owner. A lock left behind by a dead process
	on this host is taken over
	"""

	def __init__(self, lock_file: Path):
		self.lock_file = lock_file
		self.logger = logger.get()
		self.__acquired = False

	def __read_owner(self) -> Optional[dict]:
		try:
			with open(self.lock_file, 'r', encoding='utf8') as f:
				data = json.load(f)
		except FileNotFoundError:
			return None
		except ValueError:
			return {}  # corrupted, or being written right now
		return data if isinstance(data, dict) else {}

	def __is_stale(self, owner: dict) -> bool:
		if owner.get('hostname') != socket.gethostname():
			return False
		pid = owner.get('pid')
		return isinstance(pid, int) and not psutil.pid_exists(pid)

	def acquire(self):
		if self.__acquired:
			raise RuntimeError('lock {} is already acquired'.format(self.lock_file))
		self.lock_file.parent.mkdir(parents=True, exist_ok=True)
		content = json.dumps({
			'pid': os.getpid(),
			'hostname': socket.gethostname(),
			'acquired_at': time.time(),
		}).encode('utf8')

		for _ in range(2):
			try:
				fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
			except FileExistsError:
				owner = self.__read_owner()
				if owner is not None and self.__is_stale(owner):
					self.logger.warning('Taking over stale lock {} of dead process {}'.format(self.lock_file, owner.get('pid')))
					self.lock_file.unlink(missing_ok=True)
					continue
				raise RepositoryLocked(str(self.lock_file), 'pid {} on {}'.format(
					(owner or {}).get('pid', '?'), (owner or {}).get('hostname', '?'),
				))
			try:
				os.write(fd, content)
				os.fsync(fd)
			finally:
				os.close(fd)
			self.__acquired = True
			return
		raise RepositoryLocked(str(self.lock_file), 'unknown')

	def release(self):
		if self.__acquired:
			self.lock_file.unlink(missing_ok=True)
			self.__acquired = False

	def is_acquired(self) -> bool:
		return self.__acquired

	def __enter__(self) -> 'RunLock':
		self.acquire()
		return self

	def __exit__(self, exc_type, exc_val, exc_tb):
		self.release()
