import functools
import queue
import threading
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Optional

from chunkvault.utils import misc_utils


class FailFastThreadPool(ThreadPoolExecutor):
	"""
	A thread pool that:
	- makes exception raise as soon as possible
	- no more task will be submitted after an exception raises
	- blocks submit() while all workers are busy, so the producer cannot run far ahead of the workers

	submit() can be called from multiple threads
	"""
	def __init__(self, name: str, max_workers: Optional[int] = None):
		thread_name_prefix = misc_utils.make_thread_name(name)
		if max_workers is None:
			from chunkvault.config.config import Config
			max_workers = Config.get().get_effective_concurrency()

		super().__init__(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
		self.__sem = threading.Semaphore(max_workers)
		self.__all_futures: 'queue.Queue[Future]' = queue.Queue()
		self.__failed_future: Optional[Future] = None
		self.__failed_lock = threading.Lock()

	def submit(self, __fn, *args, **kwargs):
		func = functools.partial(__fn, *args, **kwargs)
		future_holder: 'queue.Queue[Future]' = queue.Queue(maxsize=1)

		def wrapper_func():
			try:
				return func()
			except Exception:
				with self.__failed_lock:
					if self.__failed_future is None:
						self.__failed_future = future_holder.get()
				raise
			finally:
				self.__sem.release()

		self.__sem.acquire()
		try:
			self.raise_if_failed()
			future = super().submit(wrapper_func)
		except BaseException:
			self.__sem.release()
			raise
		future_holder.put(future)
		self.__all_futures.put(future)
		return future

	def raise_if_failed(self):
		with self.__failed_lock:
			f = self.__failed_future
		if f is not None:
			f.result()

	def wait_all(self):
		"""
		Wait for all submitted tasks, raise the first exception met
		"""
		from chunkvault.utils import collection_utils
		self.raise_if_failed()
		for future in collection_utils.drain_queue(self.__all_futures):
			future.result()

	def __exit__(self, exc_type, exc_val, exc_tb):
		cancel = exc_type is not None
		try:
			if not cancel:
				# check task exception if no error occurs
				self.wait_all()
		except BaseException:
			cancel = True
			raise
		finally:
			self.shutdown(wait=True, cancel_futures=cancel)
		return False
