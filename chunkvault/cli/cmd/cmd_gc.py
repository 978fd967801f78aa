import argparse
import dataclasses
from pathlib import Path

from typing_extensions import override

from chunkvault.action.collect_garbage_action import CollectGarbageAction
from chunkvault.cli.cmd import CliCommandHandlerBase, CommonCommandArgs, CliCommandAdapterBase


@dataclasses.dataclass(frozen=True)
class GcCommandArgs(CommonCommandArgs):
	dry_run: bool


class GcCommandHandler(CliCommandHandlerBase):
	def __init__(self, args: GcCommandArgs):
		super().__init__()
		self.args = args

	def handle(self):
		self.init_environment(self.args.config_path)
		CollectGarbageAction(dry_run=self.args.dry_run).run()


class GcCommandAdapter(CliCommandAdapterBase):
	@property
	@override
	def command(self) -> str:
		return 'gc'

	@property
	@override
	def description(self) -> str:
		return 'Delete remote chunks that no snapshot references anymore'

	@override
	def build_parser(self, parser: argparse.ArgumentParser):
		self._add_dry_run_argument(parser, 'garbage collection')

	@override
	def run(self, args: argparse.Namespace):
		handler = GcCommandHandler(GcCommandArgs(
			config_path=Path(args.config),
			dry_run=args.dry_run,
		))
		handler.handle()
