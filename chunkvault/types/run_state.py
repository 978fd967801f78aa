import enum
import threading
from typing import Dict, FrozenSet, List, Optional, Callable


class RunState(enum.Enum):
	idle = enum.auto()
	walking = enum.auto()
	diffing = enum.auto()
	chunking = enum.auto()
	dedup_checking = enum.auto()
	uploading = enum.auto()
	committing = enum.auto()
	done = enum.auto()
	failed = enum.auto()

	def is_terminal(self) -> bool:
		return self in (RunState.done, RunState.failed)


_TRANSITIONS: Dict[RunState, FrozenSet[RunState]] = {
	RunState.idle: frozenset({RunState.walking}),
	RunState.walking: frozenset({RunState.diffing}),
	RunState.diffing: frozenset({RunState.chunking}),
	RunState.chunking: frozenset({RunState.dedup_checking}),
	RunState.dedup_checking: frozenset({RunState.uploading}),
	RunState.uploading: frozenset({RunState.committing}),
	RunState.committing: frozenset({RunState.done}),
	RunState.done: frozenset(),
	RunState.failed: frozenset(),
}


class RunStateMachine:
	"""
	The lifecycle of one backup run. Any non-terminal state may go to failed.
	Retrying is not a state of its own: it's tracked as the number of backend operations
	currently waiting for another attempt, while in chunking, dedup_checking or uploading
	"""
	RETRYABLE_STATES = frozenset({RunState.chunking, RunState.dedup_checking, RunState.uploading})

	def __init__(self, on_change: Optional[Callable[[RunState, RunState], None]] = None):
		self.__lock = threading.Lock()
		self.__state = RunState.idle
		self.__history: List[RunState] = [RunState.idle]
		self.__retrying = 0
		self.__retry_total = 0
		self.__on_change = on_change

	@property
	def state(self) -> RunState:
		return self.__state

	@property
	def history(self) -> List[RunState]:
		with self.__lock:
			return list(self.__history)

	@property
	def retrying(self) -> int:
		return self.__retrying

	@property
	def retry_total(self) -> int:
		return self.__retry_total

	def is_retrying(self) -> bool:
		return self.__retrying > 0

	def transit(self, new_state: RunState):
		with self.__lock:
			old_state = self.__state
			if new_state == RunState.failed:
				if old_state.is_terminal():
					raise AssertionError('cannot fail a run in terminal state {}'.format(old_state.name))
			elif new_state not in _TRANSITIONS[old_state]:
				raise AssertionError('illegal run state transition {} -> {}'.format(old_state.name, new_state.name))
			self.__state = new_state
			self.__history.append(new_state)
		if self.__on_change is not None:
			self.__on_change(old_state, new_state)

	def fail(self) -> RunState:
		"""
		:return: the state the run failed at
		"""
		failed_at = self.__state
		if not failed_at.is_terminal():
			self.transit(RunState.failed)
		return failed_at

	def on_retry_begin(self):
		with self.__lock:
			if self.__state not in self.RETRYABLE_STATES:
				raise AssertionError('retrying is not allowed in state {}'.format(self.__state.name))
			self.__retrying += 1
			self.__retry_total += 1

	def on_retry_end(self):
		with self.__lock:
			self.__retrying -= 1
