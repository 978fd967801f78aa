import argparse
import dataclasses
import signal
from pathlib import Path

from typing_extensions import override

from chunkvault.cli.cmd import CliCommandHandlerBase, CommonCommandArgs, CliCommandAdapterBase
from chunkvault.cli.return_codes import ErrorReturnCodes
from chunkvault.daemon.scheduled_backup_job import ScheduledBackupJob


@dataclasses.dataclass(frozen=True)
class DaemonCommandArgs(CommonCommandArgs):
	run_now: bool


class DaemonCommandHandler(CliCommandHandlerBase):
	def __init__(self, args: DaemonCommandArgs):
		super().__init__()
		self.args = args

	def handle(self):
		self.init_environment(self.args.config_path)
		if not self.config.scheduled_backup.enabled:
			self.logger.error('Scheduled backup is not enabled in the config')
			ErrorReturnCodes.invalid_argument.sys_exit()

		job = ScheduledBackupJob()

		def on_signal(signum, frame):
			self.logger.info('Received signal {}, stopping'.format(signum))
			job.stop()

		signal.signal(signal.SIGTERM, on_signal)
		signal.signal(signal.SIGINT, on_signal)
		if self.args.run_now:
			job.run_once()
		job.start()


class DaemonCommandAdapter(CliCommandAdapterBase):
	@property
	@override
	def command(self) -> str:
		return 'daemon'

	@property
	@override
	def description(self) -> str:
		return 'Keep running, and back up on the schedule of the scheduled_backup config'

	@override
	def build_parser(self, parser: argparse.ArgumentParser):
		parser.add_argument('--run-now', action='store_true', help='Run one backup right after the start')

	@override
	def run(self, args: argparse.Namespace):
		handler = DaemonCommandHandler(DaemonCommandArgs(
			config_path=Path(args.config),
			run_now=args.run_now,
		))
		handler.handle()
