import contextlib
import datetime
import os
import random
import tempfile
import unittest
from pathlib import Path
from typing import List

from chunkvault.action.collect_garbage_action import CollectGarbageAction
from chunkvault.action.create_backup_action import CreateBackupAction
from chunkvault.action.export_snapshot_action import ExportSnapshotAction
from chunkvault.action.get_snapshot_action import GetSnapshotAction, parse_snapshot_ref, LATEST
from chunkvault.action.helpers.repository import Repository
from chunkvault.action.list_snapshot_action import ListSnapshotAction
from chunkvault.action.prune_snapshot_action import PruneSnapshotAction, calc_prune_plan
from chunkvault.action.verify_snapshot_action import VerifySnapshotAction
from chunkvault.backend.base import chunk_key
from chunkvault.compressors import encode_chunk_blob, CompressMethod
from chunkvault.config.prune_config import PruneConfig
from chunkvault.exceptions import SnapshotNotFound, SnapshotPathNotFound, IntegrityError
from chunkvault.types.manifest import ManifestStats
from chunkvault.types.snapshot_info import SnapshotInfo
from tests.backup_test_utils import MemoryBackend, create_test_config, write_random_file


class _RepositoryTestBase(unittest.TestCase):
	def setUp(self):
		self.temp_dir = tempfile.TemporaryDirectory()
		self.root = Path(self.temp_dir.name)
		self.config = create_test_config(self.root)
		self.backend = MemoryBackend()
		self.source = self.config.source_path
		self.rnd = random.Random(99)
		write_random_file(self.source / 'keep.bin', 64 * 1024, self.rnd)
		write_random_file(self.source / 'dir' / 'volatile.bin', 64 * 1024, self.rnd)
		self.exit_stack = contextlib.ExitStack()
		self.repo = self.exit_stack.enter_context(Repository.open(self.config, backend=self.backend))

	def tearDown(self):
		self.exit_stack.close()
		self.temp_dir.cleanup()

	def backup(self, comment: str = '') -> int:
		return CreateBackupAction(comment=comment, config=self.config, repository=self.repo).run().snapshot_id

	def rewrite_volatile(self):
		write_random_file(self.source / 'dir' / 'volatile.bin', 64 * 1024, self.rnd)


class SnapshotQueryTestCase(_RepositoryTestBase):
	def test_parse_snapshot_ref(self):
		self.assertEqual(3, parse_snapshot_ref('3'))
		self.assertEqual(3, parse_snapshot_ref('#3'))
		self.assertEqual(3, parse_snapshot_ref(3))
		self.assertEqual(LATEST, parse_snapshot_ref('latest'))
		self.assertEqual(LATEST, parse_snapshot_ref('HEAD'))
		for bad in ['0', '-1', 'abc', '']:
			with self.assertRaises(ValueError):
				parse_snapshot_ref(bad)

	def test_list_and_get(self):
		with self.assertRaises(SnapshotNotFound):
			GetSnapshotAction('latest', config=self.config, repository=self.repo).run()
		self.assertEqual([], ListSnapshotAction(config=self.config, repository=self.repo).run())

		self.backup('one')
		self.backup('two')
		infos = ListSnapshotAction(config=self.config, repository=self.repo).run()
		self.assertEqual([1, 2], [i.snapshot_id for i in infos])
		self.assertEqual(['one', 'two'], [i.comment for i in infos])
		self.assertEqual([False, True], [i.is_head for i in infos])
		self.assertEqual(2, infos[0].stats.file_count)
		self.assertEqual([2], [i.snapshot_id for i in ListSnapshotAction(limit=1, config=self.config, repository=self.repo).run()])

		self.assertEqual(2, GetSnapshotAction('latest', config=self.config, repository=self.repo).run().snapshot_id)
		self.assertEqual('one', GetSnapshotAction(1, config=self.config, repository=self.repo).run().comment)
		with self.assertRaises(SnapshotNotFound):
			GetSnapshotAction(3, config=self.config, repository=self.repo).run()


class GarbageCollectTestCase(_RepositoryTestBase):
	def test_gc(self):
		self.backup()
		old_volatile_ids = set(self.repo.manifests.load(1).find_entry('dir/volatile.bin').chunk_ids)
		self.rewrite_volatile()
		self.backup()
		keep_ids = set(self.repo.manifests.load(2).all_chunk_ids())

		# still referenced by snapshot 1
		result = CollectGarbageAction(config=self.config, repository=self.repo).run()
		self.assertEqual(0, result.deleted_count)
		self.assertEqual(2, result.snapshot_count)

		self.repo.manifests.delete(1)
		result = CollectGarbageAction(dry_run=True, config=self.config, repository=self.repo).run()
		self.assertEqual(len(old_volatile_ids - keep_ids), result.deleted_count)
		self.assertTrue(all(chunk_key(cid) in self.backend.blobs for cid in old_volatile_ids))

		result = CollectGarbageAction(config=self.config, repository=self.repo).run()
		self.assertEqual(len(old_volatile_ids - keep_ids), result.deleted_count)
		self.assertGreater(result.deleted_size, 0)
		for cid in old_volatile_ids - keep_ids:
			self.assertNotIn(chunk_key(cid), self.backend.blobs)
			self.assertFalse(self.repo.index.lookup(cid))
		for cid in keep_ids:
			self.assertIn(chunk_key(cid), self.backend.blobs)
		self.assertTrue(VerifySnapshotAction('latest', deep=True, config=self.config, repository=self.repo).run().ok)

		self.assertTrue((self.config.storage_path / 'logs' / 'gc.log').is_file())

	def test_grace_period(self):
		self.backup()
		self.rewrite_volatile()
		self.backup()
		self.repo.manifests.delete(1)

		config = create_test_config(self.root, gc__grace_period='1h')
		result = CollectGarbageAction(config=config, repository=self.repo).run()
		self.assertEqual(0, result.deleted_count)
		self.assertGreater(result.grace_kept_count, 0)

	def test_unknown_blobs_ignored(self):
		self.backup()
		self.backend.put('chunks/zz/not-a-chunk', b'hello')
		result = CollectGarbageAction(config=self.config, repository=self.repo).run()
		self.assertEqual(0, result.deleted_count)
		self.assertIn('chunks/zz/not-a-chunk', self.backend.blobs)

	def test_interrupted_commit_leftovers(self):
		self.backup()
		# chunks uploaded by a run that never committed
		self.backend.put(chunk_key('f' * 64), encode_chunk_blob(b'orphan', CompressMethod.plain))
		result = CollectGarbageAction(config=self.config, repository=self.repo).run()
		self.assertEqual(1, result.deleted_count)
		self.assertNotIn(chunk_key('f' * 64), self.backend.blobs)


class VerifyTestCase(_RepositoryTestBase):
	def test_ok(self):
		self.backup()
		result = VerifySnapshotAction('latest', config=self.config, repository=self.repo).run()
		self.assertTrue(result.ok)
		self.assertEqual(result.chunk_count, result.ok_count)

	def test_missing_and_corrupted(self):
		self.backup()
		manifest = self.repo.manifests.load(1)
		keep_ids = manifest.find_entry('keep.bin').chunk_ids
		volatile_ids = manifest.find_entry('dir/volatile.bin').chunk_ids
		del self.backend.blobs[chunk_key(keep_ids[0])]
		self.backend.blobs[chunk_key(volatile_ids[0])] = encode_chunk_blob(b'something else', CompressMethod.plain)

		result = VerifySnapshotAction(1, config=self.config, repository=self.repo).run()
		self.assertFalse(result.ok)
		self.assertEqual([keep_ids[0]], result.missing)
		self.assertEqual({}, result.corrupted)
		self.assertEqual(['keep.bin'], result.affected_files)
		self.assertFalse(self.repo.index.lookup(keep_ids[0]))

		result = VerifySnapshotAction(1, deep=True, config=self.config, repository=self.repo).run()
		self.assertEqual([keep_ids[0]], result.missing)
		self.assertEqual([volatile_ids[0]], list(result.corrupted.keys()))
		self.assertEqual(['dir/volatile.bin', 'keep.bin'], sorted(result.affected_files))

		# the next backup puts the missing chunk back
		self.backup()
		self.assertIn(chunk_key(keep_ids[0]), self.backend.blobs)


class RestoreTestCase(_RepositoryTestBase):
	def test_sub_path(self):
		self.backup()
		output = self.root / 'out'
		result = ExportSnapshotAction(1, output, sub_path='dir/volatile.bin', config=self.config, repository=self.repo).run()
		self.assertEqual(1, result.file_count)
		self.assertEqual((self.source / 'dir' / 'volatile.bin').read_bytes(), (output / 'volatile.bin').read_bytes())

		output2 = self.root / 'out2'
		ExportSnapshotAction(1, output2, sub_path='dir', config=self.config, repository=self.repo).run()
		self.assertEqual(['volatile.bin'], os.listdir(output2))

		with self.assertRaises(SnapshotPathNotFound):
			ExportSnapshotAction(1, output, sub_path='nope', config=self.config, repository=self.repo).run()

	def test_overwrite(self):
		self.backup()
		output = self.root / 'out'
		output.mkdir()
		(output / 'keep.bin').write_bytes(b'old')
		with self.assertRaises(FileExistsError):
			ExportSnapshotAction(1, output, config=self.config, repository=self.repo).run()
		ExportSnapshotAction(1, output, overwrite=True, config=self.config, repository=self.repo).run()
		self.assertEqual((self.source / 'keep.bin').read_bytes(), (output / 'keep.bin').read_bytes())

	def test_old_snapshot(self):
		self.backup()
		old = (self.source / 'dir' / 'volatile.bin').read_bytes()
		self.rewrite_volatile()
		self.backup()
		output = self.root / 'out'
		ExportSnapshotAction(1, output, config=self.config, repository=self.repo).run()
		self.assertEqual(old, (output / 'dir' / 'volatile.bin').read_bytes())

	def test_corrupted_chunk(self):
		self.backup()
		cid = self.repo.manifests.load(1).find_entry('keep.bin').chunk_ids[0]
		self.backend.blobs[chunk_key(cid)] = encode_chunk_blob(b'evil', CompressMethod.plain)
		with self.assertRaises(IntegrityError):
			ExportSnapshotAction(1, self.root / 'out', config=self.config, repository=self.repo).run()
		self.assertFalse((self.root / 'out' / 'keep.bin').exists())


class PrunePlanTestCase(unittest.TestCase):
	DAY_NS = 24 * 3600 * 10 ** 9

	@classmethod
	def snapshots(cls, count: int, step_ns: int, now_ns: int) -> List[SnapshotInfo]:
		return [
			SnapshotInfo(
				snapshot_id=i, timestamp_ns=now_ns - (count - i) * step_ns, previous_id=i - 1 if i > 1 else None,
				comment='', stats=ManifestStats(), is_head=i == count,
			)
			for i in range(1, count + 1)
		]

	@classmethod
	def settings(cls, **kwargs) -> PruneConfig:
		return PruneConfig.deserialize({'enabled': True, 'last': 0, **kwargs})

	def kept(self, plan) -> List[int]:
		return sorted(pri.snapshot.snapshot_id for pri in plan if pri.mark.keep)

	def test_last(self):
		now = 1700000000 * 10 ** 9
		plan = calc_prune_plan(self.snapshots(5, 3600 * 10 ** 9, now), self.settings(last=2), now_ns=now)
		self.assertEqual([3, 4, 5], self.kept(plan))
		self.assertEqual('head', plan.get_keep_reason(5))
		self.assertIsNone(plan.get_keep_reason(1))
		self.assertEqual([1, 2], sorted(s.snapshot_id for s in plan.get_removals()))

	def test_head_always_kept(self):
		now = 1700000000 * 10 ** 9
		plan = calc_prune_plan(self.snapshots(3, self.DAY_NS, now), self.settings(), now_ns=now)
		self.assertEqual([3], self.kept(plan))

		plan = calc_prune_plan(self.snapshots(3, self.DAY_NS, now), self.settings(last=-1, max_lifetime='1h'), now_ns=now)
		self.assertEqual([3], self.kept(plan))

	def test_max_amount(self):
		now = 1700000000 * 10 ** 9
		plan = calc_prune_plan(self.snapshots(5, 3600 * 10 ** 9, now), self.settings(last=-1, max_amount=2), now_ns=now)
		self.assertEqual([4, 5], self.kept(plan))

	def test_day(self):
		now = int(datetime.datetime(2024, 6, 10, 12, 0, tzinfo=datetime.timezone.utc).timestamp()) * 10 ** 9
		# 4 snapshots a day, for 5 days
		snapshots = self.snapshots(20, 6 * 3600 * 10 ** 9, now)
		plan = calc_prune_plan(snapshots, self.settings(day=3), timezone=datetime.timezone.utc, now_ns=now)
		kept = self.kept(plan)
		self.assertIn(20, kept)
		days = {datetime.datetime.fromtimestamp(s.timestamp_ns / 1e9, tz=datetime.timezone.utc).date() for s in snapshots if s.snapshot_id in kept and s.snapshot_id != 20}
		self.assertEqual(3, len(days))
		self.assertEqual(4, len(kept))


class PruneActionTestCase(_RepositoryTestBase):
	def test_prune(self):
		for _ in range(4):
			self.rewrite_volatile()
			self.backup()
		settings = PruneConfig.deserialize({'enabled': True, 'last': 2})

		result = PruneSnapshotAction(settings=settings, dry_run=True, config=self.config, repository=self.repo).run()
		self.assertEqual([], result.deleted_ids)
		self.assertEqual([1, 2, 3, 4], self.repo.manifests.list_snapshot_ids())

		result = PruneSnapshotAction(settings=settings, config=self.config, repository=self.repo).run()
		self.assertEqual([1], sorted(result.deleted_ids))
		self.assertEqual([2, 3, 4], self.repo.manifests.list_snapshot_ids())
		with self.assertRaises(SnapshotNotFound):
			self.repo.manifests.load(1)
		self.assertTrue((self.config.storage_path / 'logs' / 'prune.log').is_file())

		# chunks of the pruned snapshot go away with gc
		gc_result = CollectGarbageAction(config=self.config, repository=self.repo).run()
		self.assertGreater(gc_result.deleted_count, 0)
		self.assertTrue(VerifySnapshotAction(2, config=self.config, repository=self.repo).run().ok)


if __name__ == '__main__':
	unittest.main()
