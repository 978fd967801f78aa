"""
Actions for all kinds of repository operations
"""
import contextlib
import logging
import threading
from abc import ABC, abstractmethod
from typing import TypeVar, Generic, Optional, ContextManager, TYPE_CHECKING

from chunkvault.exceptions import BackupCancelled

if TYPE_CHECKING:
	from chunkvault.action.helpers.repository import Repository
	from chunkvault.config.config import Config

_T = TypeVar('_T')


class Action(Generic[_T], ABC):
	def __init__(self, *, config: Optional['Config'] = None):
		self.is_interrupted = threading.Event()

		from chunkvault import logger
		from chunkvault.config.config import Config
		self.logger: logging.Logger = logger.get()
		self.config: Config = config if config is not None else Config.get()

	@abstractmethod
	def run(self) -> _T:
		...

	def is_interruptable(self) -> bool:
		return False

	def interrupt(self):
		self.is_interrupted.set()

	def _check_interrupted(self):
		if self.is_interrupted.is_set():
			raise BackupCancelled()


class RepositoryAction(Action[_T], ABC):
	"""
	An action working on the backup destination. Opens its own repository, unless one is given
	"""
	def __init__(self, *, repository: Optional['Repository'] = None, **kwargs):
		super().__init__(**kwargs)
		self._repository = repository

	def _open_repository(self) -> ContextManager['Repository']:
		if self._repository is not None:
			return contextlib.nullcontext(self._repository)
		from chunkvault.action.helpers.repository import Repository
		return Repository.open(self.config)
