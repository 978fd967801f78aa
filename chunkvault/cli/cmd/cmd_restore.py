import argparse
import dataclasses
from pathlib import Path
from typing import Optional

from typing_extensions import override

from chunkvault.action.export_snapshot_action import ExportSnapshotAction
from chunkvault.cli.cmd import CliCommandHandlerBase, CommonCommandArgs, CliCommandAdapterBase
from chunkvault.types.units import ByteCount


@dataclasses.dataclass(frozen=True)
class RestoreCommandArgs(CommonCommandArgs):
	snapshot: str
	output: Path
	path: Optional[str]
	overwrite: bool


class RestoreCommandHandler(CliCommandHandlerBase):
	def __init__(self, args: RestoreCommandArgs):
		super().__init__()
		self.args = args

	def handle(self):
		self.init_environment(self.args.config_path)
		result = ExportSnapshotAction(
			self.args.snapshot, self.args.output,
			sub_path=self.args.path,
			overwrite=self.args.overwrite,
		).run()
		self.logger.info('Restored snapshot #{} to {!r}: {} files, {} dirs, {} symlinks, {}'.format(
			result.snapshot_id, result.output_path.as_posix(),
			result.file_count, result.dir_count, result.symlink_count, ByteCount(result.bytes_written).auto_str(),
		))


class RestoreCommandAdapter(CliCommandAdapterBase):
	@property
	@override
	def command(self) -> str:
		return 'restore'

	@property
	@override
	def description(self) -> str:
		return 'Restore a snapshot, or a path inside it, to a directory'

	@override
	def build_parser(self, parser: argparse.ArgumentParser):
		self._add_pos_argument_snapshot_ref(parser)
		parser.add_argument('output', help='The directory to restore into')
		parser.add_argument('-p', '--path', help='Only restore this path of the snapshot, e.g. "dir/file.txt"')
		parser.add_argument('--overwrite', action='store_true', help='Replace existing files in the output directory')

	@override
	def run(self, args: argparse.Namespace):
		handler = RestoreCommandHandler(RestoreCommandArgs(
			config_path=Path(args.config),
			snapshot=args.snapshot,
			output=Path(args.output),
			path=args.path,
			overwrite=args.overwrite,
		))
		handler.handle()
