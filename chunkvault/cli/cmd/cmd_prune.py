import argparse
import dataclasses
from pathlib import Path

from typing_extensions import override

from chunkvault.action.prune_snapshot_action import PruneSnapshotAction
from chunkvault.cli.cmd import CliCommandHandlerBase, CommonCommandArgs, CliCommandAdapterBase


@dataclasses.dataclass(frozen=True)
class PruneCommandArgs(CommonCommandArgs):
	dry_run: bool


class PruneCommandHandler(CliCommandHandlerBase):
	def __init__(self, args: PruneCommandArgs):
		super().__init__()
		self.args = args

	def handle(self):
		self.init_environment(self.args.config_path)
		if not self.config.prune.enabled:
			self.logger.warning('Prune is not enabled in the config, nothing to do')
			return

		result = PruneSnapshotAction(dry_run=self.args.dry_run).run()
		for pri in result.plan:
			self.logger.info('%s', '#{} {} ({})'.format(pri.snapshot.snapshot_id, 'keep' if pri.mark.keep else 'remove', pri.mark.reason))
		self.logger.info('{} snapshots deleted'.format(len(result.deleted_ids)))


class PruneCommandAdapter(CliCommandAdapterBase):
	@property
	@override
	def command(self) -> str:
		return 'prune'

	@property
	@override
	def description(self) -> str:
		return 'Delete snapshots not retained by the prune config. Run gc afterwards to free the chunks'

	@override
	def build_parser(self, parser: argparse.ArgumentParser):
		self._add_dry_run_argument(parser, 'prune')

	@override
	def run(self, args: argparse.Namespace):
		handler = PruneCommandHandler(PruneCommandArgs(
			config_path=Path(args.config),
			dry_run=args.dry_run,
		))
		handler.handle()
