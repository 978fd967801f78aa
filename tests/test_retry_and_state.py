import random
import threading
import unittest
from typing import List

from chunkvault.exceptions import TransientBackendError, FatalBackendError, BackupCancelled
from chunkvault.types.run_state import RunState, RunStateMachine
from chunkvault.utils.retry_utils import RetryPolicy


class _Flaky:
	def __init__(self, failures: int, error_cls=TransientBackendError):
		self.failures = failures
		self.error_cls = error_cls
		self.calls = 0

	def __call__(self) -> str:
		self.calls += 1
		if self.calls <= self.failures:
			raise self.error_cls('boom {}'.format(self.calls))
		return 'ok'


class RetryPolicyTestCase(unittest.TestCase):
	def create_policy(self, max_attempts: int = 5, **kwargs) -> RetryPolicy:
		self.sleeps: List[float] = []
		return RetryPolicy(max_attempts, 1.0, 8.0, 2.0, rnd=random.Random(0), sleeper=self.sleeps.append, **kwargs)

	def test_success_after_retries(self):
		policy = self.create_policy()
		func = _Flaky(3)
		self.assertEqual('ok', policy.call(func, 'test'))
		self.assertEqual(4, func.calls)
		self.assertEqual(3, len(self.sleeps))

	def test_exhausted(self):
		policy = self.create_policy(max_attempts=3)
		func = _Flaky(10)
		with self.assertRaises(TransientBackendError) as cm:
			policy.call(func, 'test')
		self.assertEqual('boom 3', str(cm.exception))
		self.assertEqual(3, func.calls)
		self.assertEqual(2, len(self.sleeps))

	def test_fatal_not_retried(self):
		policy = self.create_policy()
		func = _Flaky(1, FatalBackendError)
		with self.assertRaises(FatalBackendError):
			policy.call(func, 'test')
		self.assertEqual(1, func.calls)
		self.assertEqual([], self.sleeps)

	def test_delays(self):
		policy = self.create_policy()
		self.assertEqual([1.0, 2.0, 4.0, 8.0, 8.0], [policy.get_delay_cap(a) for a in range(1, 6)])
		for attempt in range(1, 10):
			delay = policy.get_delay(attempt)
			self.assertGreaterEqual(delay, 0)
			self.assertLessEqual(delay, policy.get_delay_cap(attempt))

	def test_retry_callbacks(self):
		policy = self.create_policy()
		events = []
		policy.call(_Flaky(2), 'test', on_retry_begin=lambda: events.append('begin'), on_retry_end=lambda: events.append('end'))
		self.assertEqual(['begin', 'end'], events)

		events.clear()
		policy.call(_Flaky(0), 'test', on_retry_begin=lambda: events.append('begin'), on_retry_end=lambda: events.append('end'))
		self.assertEqual([], events)

		events.clear()
		with self.assertRaises(TransientBackendError):
			policy.call(_Flaky(10), 'test', on_retry_begin=lambda: events.append('begin'), on_retry_end=lambda: events.append('end'))
		self.assertEqual(['begin', 'end'], events)

	def test_interrupt(self):
		event = threading.Event()
		policy = RetryPolicy(5, 10.0, 10.0, interrupt_event=event)

		def func():
			event.set()
			raise TransientBackendError('boom')

		with self.assertRaises(BackupCancelled):
			policy.call(func, 'test')

		with self.assertRaises(BackupCancelled):
			policy.call(lambda: 'never', 'test')

	def test_bad_args(self):
		with self.assertRaises(ValueError):
			RetryPolicy(0, 1, 1)


class RunStateMachineTestCase(unittest.TestCase):
	HAPPY_PATH = [
		RunState.walking, RunState.diffing, RunState.chunking, RunState.dedup_checking,
		RunState.uploading, RunState.committing, RunState.done,
	]

	def test_happy_path(self):
		changes = []
		sm = RunStateMachine(on_change=lambda old, new: changes.append((old, new)))
		for state in self.HAPPY_PATH:
			sm.transit(state)
		self.assertEqual(RunState.done, sm.state)
		self.assertEqual([RunState.idle] + self.HAPPY_PATH, sm.history)
		self.assertEqual((RunState.committing, RunState.done), changes[-1])

	def test_illegal(self):
		sm = RunStateMachine()
		with self.assertRaises(AssertionError):
			sm.transit(RunState.chunking)
		sm.transit(RunState.walking)
		with self.assertRaises(AssertionError):
			sm.transit(RunState.committing)
		sm.transit(RunState.diffing)
		with self.assertRaises(AssertionError):
			sm.transit(RunState.dedup_checking)
		sm.transit(RunState.chunking)
		with self.assertRaises(AssertionError):
			sm.transit(RunState.uploading)
		with self.assertRaises(AssertionError):
			sm.transit(RunState.idle)

	def test_fail_from_anywhere(self):
		for i in range(len(self.HAPPY_PATH) - 1):
			sm = RunStateMachine()
			for state in self.HAPPY_PATH[:i]:
				sm.transit(state)
			expected = self.HAPPY_PATH[i - 1] if i > 0 else RunState.idle
			self.assertEqual(expected, sm.fail())
			self.assertEqual(RunState.failed, sm.state)
			with self.assertRaises(AssertionError):
				sm.transit(RunState.walking)

	def test_terminal(self):
		sm = RunStateMachine()
		for state in self.HAPPY_PATH:
			sm.transit(state)
		self.assertEqual(RunState.done, sm.fail())
		self.assertEqual(RunState.done, sm.state)
		with self.assertRaises(AssertionError):
			sm.transit(RunState.failed)

	def test_retrying(self):
		sm = RunStateMachine()
		sm.transit(RunState.walking)
		with self.assertRaises(AssertionError):
			sm.on_retry_begin()
		for state in self.HAPPY_PATH[1:3]:
			sm.transit(state)
		self.assertEqual(RunState.chunking, sm.state)
		sm.on_retry_begin()
		sm.on_retry_begin()
		self.assertTrue(sm.is_retrying())
		self.assertEqual(2, sm.retrying)
		sm.on_retry_end()
		sm.on_retry_end()
		self.assertFalse(sm.is_retrying())
		self.assertEqual(2, sm.retry_total)


if __name__ == '__main__':
	unittest.main()
