import datetime
import threading
from typing import Optional

from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from chunkvault import logger
from chunkvault.action import Action
from chunkvault.config.config import Config
from chunkvault.exceptions import ChunkVaultError, RepositoryLocked, BackupCancelled


class ScheduledBackupJob:
	"""
	Runs backups on the schedule of the scheduled_backup config, optionally followed by
	a prune and a garbage collection
	"""
	JOB_ID = 'scheduled_backup'

	def __init__(self, config: Optional[Config] = None, scheduler: Optional[BaseScheduler] = None):
		self.config = config if config is not None else Config.get()
		self.logger = logger.get()
		self.scheduler = scheduler if scheduler is not None else BlockingScheduler()
		self.__current_action: Optional[Action] = None
		self.__action_lock = threading.Lock()
		self.__stopped = threading.Event()
		self.run_count = 0
		self.fail_count = 0

	@property
	def job_config(self):
		return self.config.scheduled_backup

	def _create_trigger(self) -> BaseTrigger:
		if self.job_config.interval is not None:
			return IntervalTrigger(seconds=self.job_config.interval.value, jitter=self.job_config.jitter.value)
		elif self.job_config.crontab is not None:
			trigger = CronTrigger.from_crontab(self.job_config.crontab)
			trigger.jitter = self.job_config.jitter.value
			return trigger
		else:
			raise ValueError('no valid trigger for the job. is the config correct? config: {}'.format(self.job_config))

	def __run_action(self, action: Action):
		with self.__action_lock:
			if self.__stopped.is_set():
				raise BackupCancelled()
			self.__current_action = action
		try:
			return action.run()
		finally:
			with self.__action_lock:
				self.__current_action = None

	def run_once(self) -> bool:
		"""
		:return: True if everything went fine
		"""
		from chunkvault.action.collect_garbage_action import CollectGarbageAction
		from chunkvault.action.create_backup_action import CreateBackupAction
		from chunkvault.action.prune_snapshot_action import PruneSnapshotAction

		self.run_count += 1
		try:
			self.__run_action(CreateBackupAction(comment='scheduled backup', config=self.config))
			if self.job_config.run_prune and self.config.prune.enabled:
				self.__run_action(PruneSnapshotAction(config=self.config))
			if self.job_config.run_gc:
				self.__run_action(CollectGarbageAction(config=self.config))
		except RepositoryLocked as e:
			self.logger.warning('Scheduled backup skipped, the repository is busy: {}'.format(e))
			self.fail_count += 1
			return False
		except BackupCancelled:
			self.logger.warning('Scheduled backup cancelled')
			self.fail_count += 1
			return False
		except ChunkVaultError as e:
			self.logger.error('Scheduled backup failed: {}'.format(e))
			self.fail_count += 1
			return False
		return True

	def enable(self):
		if not self.job_config.enabled:
			raise ValueError('scheduled backup is not enabled in the config')
		self.scheduler.add_job(
			func=self.run_once, trigger=self._create_trigger(), id=self.JOB_ID,
			max_instances=1, coalesce=True, misfire_grace_time=None,
		)

	def get_next_run_time(self) -> Optional[datetime.datetime]:
		job = self.scheduler.get_job(self.JOB_ID)
		# pending jobs of a scheduler not started yet have no next_run_time
		return getattr(job, 'next_run_time', None) if job is not None else None

	def start(self):
		"""
		Blocks until :meth:`stop` is called, when it's a blocking scheduler
		"""
		self.enable()
		self.logger.info('Scheduled backup daemon started')
		self.scheduler.start()

	def stop(self):
		self.__stopped.set()
		with self.__action_lock:
			if self.__current_action is not None and self.__current_action.is_interruptable():
				self.__current_action.interrupt()
		if self.scheduler.running:
			self.scheduler.shutdown(wait=False)
		self.logger.info('Scheduled backup daemon stopped')
