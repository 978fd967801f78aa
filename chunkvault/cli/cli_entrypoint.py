import argparse
from typing import List, Dict

from chunkvault import constants
from chunkvault.cli import cli_utils
from chunkvault.cli.cmd import CliCommandAdapterBase
from chunkvault.cli.cmd.cmd_backup import BackupCommandAdapter
from chunkvault.cli.cmd.cmd_daemon import DaemonCommandAdapter
from chunkvault.cli.cmd.cmd_gc import GcCommandAdapter
from chunkvault.cli.cmd.cmd_list import ListCommandAdapter
from chunkvault.cli.cmd.cmd_prune import PruneCommandAdapter
from chunkvault.cli.cmd.cmd_restore import RestoreCommandAdapter
from chunkvault.cli.cmd.cmd_show import ShowCommandAdapter
from chunkvault.cli.cmd.cmd_verify import VerifyCommandAdapter
from chunkvault.cli.return_codes import ErrorReturnCodes
from chunkvault.exceptions import SnapshotNotFound, SnapshotPathNotFound, RepositoryLocked, BackupRunFailed, BackupCancelled, ChunkVaultError
from chunkvault.logger import get as get_logger
from chunkvault.utils import log_utils

__all__ = ['cli_entry']


def __prepare_logger():
	logger = get_logger()
	assert len(logger.handlers) == 1
	logger.handlers[0].setFormatter(log_utils.LOG_FORMATTER_NO_FUNC)


__prepare_logger()


class CliEntrypoint:
	def __init__(self):
		self.logger = get_logger()
		self.adaptors = self.__create_command_adapters()

	@classmethod
	def __create_command_adapters(cls) -> Dict[str, CliCommandAdapterBase]:
		all_adapters: List[CliCommandAdapterBase] = [
			BackupCommandAdapter(),
			DaemonCommandAdapter(),
			GcCommandAdapter(),
			ListCommandAdapter(),
			PruneCommandAdapter(),
			RestoreCommandAdapter(),
			ShowCommandAdapter(),
			VerifyCommandAdapter(),
		]
		adaptor_by_command = {adapter.command: adapter for adapter in all_adapters}

		if len(all_adapters) != len(adaptor_by_command):
			raise AssertionError(all_adapters, adaptor_by_command)

		return adaptor_by_command

	def main(self):
		parser = argparse.ArgumentParser(description='ChunkVault v{} CLI tools'.format(cli_utils.get_version()), formatter_class=argparse.ArgumentDefaultsHelpFormatter)
		parser.add_argument('-c', '--config', default=constants.DEFAULT_CONFIG_FILE_NAME, help='Path to the config file')
		subparsers = parser.add_subparsers(title='Command', help='Available commands', dest='command')

		for adapter in self.adaptors.values():
			subparser = subparsers.add_parser(adapter.command, help=adapter.description, description=adapter.description)
			adapter.build_parser(subparser)

		args = parser.parse_args()
		if args.command is None:
			parser.print_help()
			return

		adapter = self.adaptors.get(args.command)
		if adapter is None:
			self.logger.error('Unknown command {!r}'.format(args.command))
			ErrorReturnCodes.invalid_argument.sys_exit()

		try:
			adapter.run(args)
		except SnapshotNotFound as e:
			if e.snapshot_id is None:
				self.logger.error('There is no snapshot yet')
			else:
				self.logger.error('Snapshot #{} does not exist'.format(e.snapshot_id))
			ErrorReturnCodes.snapshot_not_found.sys_exit()
		except SnapshotPathNotFound as e:
			self.logger.error('Path {!r} in snapshot #{} does not exist'.format(e.path, e.snapshot_id))
			ErrorReturnCodes.snapshot_path_not_found.sys_exit()
		except RepositoryLocked as e:
			self.logger.error('Another run is in progress, lock file {!r} is held by {}'.format(e.lock_file, e.owner))
			ErrorReturnCodes.repository_locked.sys_exit()
		except (BackupRunFailed, BackupCancelled) as e:
			self.logger.error('{}'.format(e))
			ErrorReturnCodes.action_failed.sys_exit()
		except ChunkVaultError as e:
			self.logger.error('{}: {}'.format(type(e).__name__, e))
			ErrorReturnCodes.action_failed.sys_exit()
		except FileExistsError as e:
			self.logger.error('{}, use --overwrite to replace it'.format(e))
			ErrorReturnCodes.invalid_argument.sys_exit()
		except ImportError as e:
			self.logger.error('Missing dependency: {}'.format(e))
			ErrorReturnCodes.missing_dependency.sys_exit()


def cli_entry():
	CliEntrypoint().main()
