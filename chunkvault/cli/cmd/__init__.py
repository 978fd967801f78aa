import argparse
import dataclasses
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from chunkvault import logger
from chunkvault.action.get_snapshot_action import parse_snapshot_ref
from chunkvault.cli.return_codes import ErrorReturnCodes
from chunkvault.config.config import Config, set_config_instance


@dataclasses.dataclass(frozen=True)
class CommonCommandArgs:
	config_path: Path


class CliCommandHandlerBase(ABC):
	def __init__(self):
		self.logger: logging.Logger = logger.get()

	@property
	def config(self) -> Config:
		return Config.get()

	# ==================== Utils ====================

	def init_environment(self, config_path: Path):
		if config_path.is_file():
			try:
				config = Config.load(config_path)
			except ValueError as e:
				self.logger.error('Bad config file {!r}: {}'.format(config_path.as_posix(), e))
				ErrorReturnCodes.invalid_argument.sys_exit()
			self.logger.debug('Loaded config file {!r}'.format(config_path.as_posix()))
		else:
			self.logger.warning('Config file {!r} does not exist, using the default config'.format(config_path.as_posix()))
			config = Config.get_default()
		set_config_instance(config)


class CliCommandAdapterBase(ABC):
	@property
	@abstractmethod
	def command(self) -> str:
		raise NotImplementedError()

	@property
	@abstractmethod
	def description(self) -> str:
		raise NotImplementedError()

	@abstractmethod
	def build_parser(self, parser: argparse.ArgumentParser):
		raise NotImplementedError()

	@abstractmethod
	def run(self, args: argparse.Namespace):
		raise NotImplementedError()

	# ==================== Utils ====================

	@classmethod
	def _add_pos_argument_snapshot_ref(cls, parser: argparse.ArgumentParser, *, default: bool = False):
		def snapshot_ref(s: str):
			_ = parse_snapshot_ref(s)  # raises ValueError if it's invalid
			return s

		kwargs = {'nargs': '?', 'default': 'latest'} if default else {}
		parser.add_argument('snapshot', type=snapshot_ref, help='The ID of the snapshot. Besides an integer ID, it can also be "latest"', **kwargs)

	@classmethod
	def _add_dry_run_argument(cls, parser: argparse.ArgumentParser, what: str):
		parser.add_argument('--dry-run', action='store_true', help='Only report what {} would do, change nothing'.format(what))
