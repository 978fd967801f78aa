import argparse
import dataclasses
from pathlib import Path
from typing import Optional

from typing_extensions import override

from chunkvault.action.list_snapshot_action import ListSnapshotAction
from chunkvault.cli.cmd import CliCommandHandlerBase, CommonCommandArgs, CliCommandAdapterBase
from chunkvault.types.units import ByteCount


@dataclasses.dataclass(frozen=True)
class ListCommandArgs(CommonCommandArgs):
	human: bool
	limit: Optional[int]


class ListCommandHandler(CliCommandHandlerBase):
	def __init__(self, args: ListCommandArgs):
		super().__init__()
		self.args = args

	def handle(self):
		self.init_environment(self.args.config_path)

		snapshots = ListSnapshotAction(limit=self.args.limit).run()
		self.logger.info('Snapshot amount: {}'.format(len(snapshots)))
		for snapshot in snapshots:
			values = {
				'id': snapshot.snapshot_id,
				'date': repr(snapshot.date_str),
				'files': snapshot.stats.file_count,
				'size': ByteCount(snapshot.stats.total_size).auto_str() if self.args.human else snapshot.stats.total_size,
				'comment': repr(snapshot.comment),
			}
			line = ' '.join([f'{k}={v}' for k, v in values.items()])
			if snapshot.is_head:
				line += ' (head)'
			self.logger.info('%s', line)


class ListCommandAdapter(CliCommandAdapterBase):
	@property
	@override
	def command(self) -> str:
		return 'list'

	@property
	@override
	def description(self) -> str:
		return 'List committed snapshots'

	@override
	def build_parser(self, parser: argparse.ArgumentParser):
		parser.add_argument('-H', '--human', action='store_true', help='Prettify sizes, make it human-readable')
		parser.add_argument('-n', '--limit', type=int, help='Only list the newest N snapshots')

	@override
	def run(self, args: argparse.Namespace):
		handler = ListCommandHandler(ListCommandArgs(
			config_path=Path(args.config),
			human=args.human,
			limit=args.limit,
		))
		handler.handle()
