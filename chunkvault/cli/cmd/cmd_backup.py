import argparse
import dataclasses
import signal
from pathlib import Path
from typing import Optional

from typing_extensions import override

from chunkvault.action.create_backup_action import CreateBackupAction
from chunkvault.cli.cmd import CliCommandHandlerBase, CommonCommandArgs, CliCommandAdapterBase
from chunkvault.types.units import ByteCount


@dataclasses.dataclass(frozen=True)
class BackupCommandArgs(CommonCommandArgs):
	comment: str
	dry_run: bool
	source: Optional[Path]


class BackupCommandHandler(CliCommandHandlerBase):
	def __init__(self, args: BackupCommandArgs):
		super().__init__()
		self.args = args

	def handle(self):
		self.init_environment(self.args.config_path)

		action = CreateBackupAction(comment=self.args.comment, dry_run=self.args.dry_run, source_path=self.args.source)

		def on_signal(signum, frame):
			self.logger.warning('Received signal {}, cancelling the backup run'.format(signum))
			action.interrupt()

		signal.signal(signal.SIGTERM, on_signal)
		try:
			result = action.run()
		except KeyboardInterrupt:
			action.interrupt()
			raise

		stats = result.stats
		self.logger.info('%s', f'===== Backup {"dry run" if result.dry_run else "run"} done =====')
		self.logger.info('%s', f'Snapshot: {result.snapshot_id if result.snapshot_id is not None else "(not committed)"}')
		self.logger.info('%s', f'Previous: {result.previous_id}')
		self.logger.info('%s', f'Files: total={stats.files_total} skipped={stats.files_skipped} reprocessed={stats.files_reprocessed} demoted={stats.files_demoted}')
		self.logger.info('%s', f'Chunks: total={stats.chunks_total} uploaded={stats.chunks_uploaded} index_hit={stats.chunks_index_hit} remote_hit={stats.chunks_remote_hit} run_hit={stats.chunks_run_hit}')
		self.logger.info('%s', f'Bytes: read={ByteCount(stats.bytes_read).auto_str()} uploaded={ByteCount(stats.bytes_uploaded).auto_str()}')
		self.logger.info('%s', f'Warnings: {len(result.skipped_entries)}')
		for skipped in result.skipped_entries:
			self.logger.info('%s', f'  {skipped.path!r}: {skipped.reason}')
		self.logger.info('%s', f'Cost: {result.cost_sec:.2f}s')


class BackupCommandAdapter(CliCommandAdapterBase):
	@property
	@override
	def command(self) -> str:
		return 'backup'

	@property
	@override
	def description(self) -> str:
		return 'Run one backup: upload what changed, then commit a new snapshot'

	@override
	def build_parser(self, parser: argparse.ArgumentParser):
		parser.add_argument('-m', '--comment', default='', help='Comment of the snapshot')
		parser.add_argument('-s', '--source', help='Override the source directory from the config')
		self._add_dry_run_argument(parser, 'the backup')

	@override
	def run(self, args: argparse.Namespace):
		handler = BackupCommandHandler(BackupCommandArgs(
			config_path=Path(args.config),
			comment=args.comment,
			dry_run=args.dry_run,
			source=Path(args.source) if args.source else None,
		))
		handler.handle()
