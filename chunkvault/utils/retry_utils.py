import random
import threading
import time
from typing import Callable, TypeVar, Optional, TYPE_CHECKING

from chunkvault import logger
from chunkvault.exceptions import TransientBackendError, BackupCancelled

if TYPE_CHECKING:
	from chunkvault.config.retry_config import RetryConfig

_T = TypeVar('_T')


class RetryPolicy:
	"""
	Bounded exponential backoff with full jitter, applied to one backend operation at a time.

	Only :class:`TransientBackendError` is retried. Everything else, :class:`FatalBackendError` included,
	propagates at once. When the attempts run out, the last transient error is re-raised
	"""

	def __init__(
			self, max_attempts: int, base_delay: float, max_delay: float, multiplier: float = 2.0, *,
			rnd: Optional[random.Random] = None,
			sleeper: Optional[Callable[[float], None]] = None,
			interrupt_event: Optional[threading.Event] = None,
	):
		if max_attempts < 1:
			raise ValueError('max_attempts should be at least 1, got {}'.format(max_attempts))
		self.max_attempts = max_attempts
		self.base_delay = base_delay
		self.max_delay = max_delay
		self.multiplier = multiplier
		self.logger = logger.get()
		self.__rnd = rnd or random.Random()
		self.__rnd_lock = threading.Lock()
		self.__sleeper = sleeper
		self.__interrupt_event = interrupt_event

	@classmethod
	def from_config(cls, config: 'RetryConfig', **kwargs) -> 'RetryPolicy':
		return cls(
			max_attempts=config.max_attempts,
			base_delay=config.base_delay.value,
			max_delay=config.max_delay.value,
			multiplier=config.multiplier,
			**kwargs,
		)

	def with_interrupt_event(self, event: threading.Event) -> 'RetryPolicy':
		return RetryPolicy(
			self.max_attempts, self.base_delay, self.max_delay, self.multiplier,
			rnd=self.__rnd, sleeper=self.__sleeper, interrupt_event=event,
		)

	def get_delay_cap(self, attempt: int) -> float:
		"""
		:param attempt: the attempt that just failed, starting from 1
		"""
		return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))

	def get_delay(self, attempt: int) -> float:
		cap = self.get_delay_cap(attempt)
		with self.__rnd_lock:
			return self.__rnd.uniform(0, cap)

	def __sleep(self, delay: float):
		if self.__sleeper is not None:
			self.__sleeper(delay)
		elif self.__interrupt_event is not None:
			if self.__interrupt_event.wait(delay):
				raise BackupCancelled()
		else:
			time.sleep(delay)

	def call(
			self, func: Callable[[], _T], what: str, *,
			on_retry_begin: Optional[Callable[[], None]] = None,
			on_retry_end: Optional[Callable[[], None]] = None,
	) -> _T:
		retrying = False
		try:
			for attempt in range(1, self.max_attempts + 1):
				if self.__interrupt_event is not None and self.__interrupt_event.is_set():
					raise BackupCancelled()
				try:
					return func()
				except TransientBackendError as e:
					if attempt >= self.max_attempts:
						self.logger.error('{} failed after {} attempts: {}'.format(what, attempt, e))
						raise
					delay = self.get_delay(attempt)
					self.logger.warning('{} failed (attempt {} / {}), retry in {:.2f}s: {}'.format(what, attempt, self.max_attempts, delay, e))
					if not retrying:
						retrying = True
						if on_retry_begin is not None:
							on_retry_begin()
					self.__sleep(delay)
			raise AssertionError('unreachable')
		finally:
			if retrying and on_retry_end is not None:
				on_retry_end()
