from typing import Optional, Any

from apscheduler.triggers.cron import CronTrigger
from mcdreforged.api.utils import Serializable

from chunkvault.types.units import Duration


class ScheduledBackupConfig(Serializable):
	"""
	Trigger of the daemon. Exactly one of interval and crontab is used when enabled
	"""
	enabled: bool = False
	interval: Optional[Duration] = None
	crontab: Optional[str] = '0 3 * * *'
	jitter: Duration = Duration('1m')

	# follow every scheduled backup with a prune (when prune is enabled) and a garbage collection
	run_prune: bool = True
	run_gc: bool = False

	def validate_attribute(self, attr_name: str, attr_value: Any, **kwargs):
		if attr_name == 'crontab' and attr_value is not None:
			try:
				CronTrigger.from_crontab(attr_value)
			except ValueError as e:
				raise ValueError('bad crontab {!r}: {}'.format(attr_value, e)) from e

	def on_deserialization(self, **kwargs):
		if not self.enabled:
			return
		if (self.interval is None) == (self.crontab is None):
			raise ValueError('scheduled_backup needs exactly one of interval and crontab, got interval={} crontab={!r}'.format(self.interval, self.crontab))
