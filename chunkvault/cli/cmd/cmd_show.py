import argparse
import dataclasses
import datetime
from pathlib import Path

from typing_extensions import override

from chunkvault.action.get_snapshot_action import GetSnapshotAction
from chunkvault.cli.cmd import CliCommandHandlerBase, CommonCommandArgs, CliCommandAdapterBase
from chunkvault.types.manifest import FileEntry, DirEntry, SymlinkEntry
from chunkvault.types.units import ByteCount


@dataclasses.dataclass(frozen=True)
class ShowCommandArgs(CommonCommandArgs):
	snapshot: str
	files: bool


class ShowCommandHandler(CliCommandHandlerBase):
	def __init__(self, args: ShowCommandArgs):
		super().__init__()
		self.args = args

	def handle(self):
		self.init_environment(self.args.config_path)
		manifest = GetSnapshotAction(self.args.snapshot).run()
		stats = manifest.stats
		date_str = datetime.datetime.fromtimestamp(manifest.timestamp_ns / 1e9).strftime('%Y-%m-%d %H:%M:%S')

		self.logger.info('%s', f'===== Snapshot #{manifest.snapshot_id} =====')
		self.logger.info('%s', f'ID: {manifest.snapshot_id}')
		self.logger.info('%s', f'Previous: {manifest.previous_id}')
		self.logger.info('%s', f'Creation date: {date_str}')
		self.logger.info('%s', f'Comment: {manifest.comment}')
		self.logger.info('%s', f'Hash method: {manifest.hash_method.name}')
		self.logger.info('%s', f'Size: {ByteCount(stats.total_size).auto_str()} ({stats.total_size})')
		self.logger.info('%s', f'Entries: files={stats.file_count} dirs={stats.dir_count} symlinks={stats.symlink_count}')
		self.logger.info('%s', f'Chunks: references={stats.chunk_ref_count} distinct={len(manifest.all_chunk_ids())}')
		if self.args.files:
			for path, entry in manifest.iter_entries():
				if isinstance(entry, FileEntry):
					self.logger.info('%s', f'  {path} ({ByteCount(entry.size).auto_str()}, {len(entry.chunk_ids)} chunks)')
				elif isinstance(entry, DirEntry):
					self.logger.info('%s', f'  {path}/')
				elif isinstance(entry, SymlinkEntry):
					self.logger.info('%s', f'  {path} -> {entry.target}')


class ShowCommandAdapter(CliCommandAdapterBase):
	@property
	@override
	def command(self) -> str:
		return 'show'

	@property
	@override
	def description(self) -> str:
		return 'Show detailed information of the given snapshot'

	@override
	def build_parser(self, parser: argparse.ArgumentParser):
		self._add_pos_argument_snapshot_ref(parser, default=True)
		parser.add_argument('-f', '--files', action='store_true', help='List all entries of the snapshot')

	@override
	def run(self, args: argparse.Namespace):
		handler = ShowCommandHandler(ShowCommandArgs(
			config_path=Path(args.config),
			snapshot=args.snapshot,
			files=args.files,
		))
		handler.handle()
