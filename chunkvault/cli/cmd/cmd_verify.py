import argparse
import dataclasses
from pathlib import Path

from typing_extensions import override

from chunkvault.action.verify_snapshot_action import VerifySnapshotAction
from chunkvault.cli.cmd import CliCommandHandlerBase, CommonCommandArgs, CliCommandAdapterBase
from chunkvault.cli.return_codes import ErrorReturnCodes


@dataclasses.dataclass(frozen=True)
class VerifyCommandArgs(CommonCommandArgs):
	snapshot: str
	deep: bool


class VerifyCommandHandler(CliCommandHandlerBase):
	def __init__(self, args: VerifyCommandArgs):
		super().__init__()
		self.args = args

	def handle(self):
		self.init_environment(self.args.config_path)
		result = VerifySnapshotAction(self.args.snapshot, deep=self.args.deep).run()
		for chunk_id in result.missing:
			self.logger.info('%s', f'missing chunk: {chunk_id}')
		for chunk_id, reason in result.corrupted.items():
			self.logger.info('%s', f'corrupted chunk: {chunk_id}: {reason}')
		for path in result.affected_files:
			self.logger.info('%s', f'affected file: {path}')
		if not result.ok:
			ErrorReturnCodes.verification_failed.sys_exit()


class VerifyCommandAdapter(CliCommandAdapterBase):
	@property
	@override
	def command(self) -> str:
		return 'verify'

	@property
	@override
	def description(self) -> str:
		return 'Check that all chunks of a snapshot are in the backend'

	@override
	def build_parser(self, parser: argparse.ArgumentParser):
		self._add_pos_argument_snapshot_ref(parser, default=True)
		parser.add_argument('--deep', action='store_true', help='Download every chunk and check its content, instead of checking its existence only')

	@override
	def run(self, args: argparse.Namespace):
		handler = VerifyCommandHandler(VerifyCommandArgs(
			config_path=Path(args.config),
			snapshot=args.snapshot,
			deep=args.deep,
		))
		handler.handle()
