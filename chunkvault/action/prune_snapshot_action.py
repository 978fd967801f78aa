import collections
import dataclasses
import datetime
import functools
import time
from typing import List, Dict, Optional, Callable

import pytz

from chunkvault.action import RepositoryAction
from chunkvault.action.list_snapshot_action import ListSnapshotAction
from chunkvault.config.prune_config import PruneConfig
from chunkvault.types.snapshot_info import SnapshotInfo
from chunkvault.utils import log_utils


@dataclasses.dataclass(frozen=True)
class PruneMark:
	keep: bool
	reason: str

	@classmethod
	def create_keep(cls, reason: str) -> 'PruneMark':
		return PruneMark(True, reason)

	@classmethod
	def create_head(cls) -> 'PruneMark':
		return PruneMark(True, 'head')

	@classmethod
	def create_remove(cls, reason: str) -> 'PruneMark':
		return PruneMark(False, reason)


@dataclasses.dataclass(frozen=True)
class PrunePlanItem:
	snapshot: SnapshotInfo
	mark: PruneMark


class PrunePlan(List[PrunePlanItem]):
	def get_keep_reason(self, snapshot_id: int) -> Optional[str]:
		mark = self.id_to_mark[snapshot_id]
		if mark.keep:
			return mark.reason
		return None

	@functools.cached_property
	def id_to_mark(self) -> Dict[int, PruneMark]:
		return {pri.snapshot.snapshot_id: pri.mark for pri in self}

	def get_removals(self) -> List[SnapshotInfo]:
		return [pri.snapshot for pri in self if not pri.mark.keep]


@dataclasses.dataclass
class PruneResult:
	plan: PrunePlan
	deleted_ids: List[int] = dataclasses.field(default_factory=list)


def calc_prune_plan(snapshots: List[SnapshotInfo], settings: PruneConfig, *, timezone: Optional[datetime.tzinfo] = None, now_ns: Optional[int] = None) -> PrunePlan:
	"""
	Retention in the proxmox style: each of the last / hour / day / week / month / year policies keeps
	the newest snapshot of its most recent buckets. max_amount and max_lifetime then cap what's kept.
	The head snapshot is always kept
	"""
	marks: Dict[int, PruneMark] = {}
	fallback_marks: Dict[int, PruneMark] = {}
	snapshots = list(sorted(snapshots, key=lambda s: (s.timestamp_ns, s.snapshot_id), reverse=True))  # new -> old

	def has_keep_mark(snapshot: SnapshotInfo) -> bool:
		m = marks.get(snapshot.snapshot_id)
		return m is not None and m.keep and not snapshot.is_head

	# ref: https://github.com/proxmox/proxmox-backup/blob/master/pbs-datastore/src/prune.rs
	def mark_selections(limit: int, policy: str, bucket_mapper: Callable[[SnapshotInfo], str]):
		already_included: Dict[str, SnapshotInfo] = {}
		handled_buckets: Dict[str, SnapshotInfo] = {}
		for snapshot in snapshots:
			if has_keep_mark(snapshot):
				already_included[bucket_mapper(snapshot)] = snapshot

		for snapshot in snapshots:
			if snapshot.snapshot_id in marks:
				continue
			if snapshot.is_head:
				marks[snapshot.snapshot_id] = PruneMark.create_head()
				continue
			bucket = bucket_mapper(snapshot)
			if bucket in already_included:
				existed = already_included[bucket]
				fallback_marks[snapshot.snapshot_id] = fallback_marks.get(snapshot.snapshot_id) or PruneMark.create_remove(f'superseded by {existed.snapshot_id} ({policy})')
				continue
			if bucket in handled_buckets:
				existed = handled_buckets[bucket]
				marks[snapshot.snapshot_id] = PruneMark.create_remove(f'superseded by {existed.snapshot_id} ({policy})')
			else:
				if 0 <= limit <= len(handled_buckets):
					break
				handled_buckets[bucket] = snapshot
				marks[snapshot.snapshot_id] = PruneMark.create_keep(f'keep {policy} {len(handled_buckets)}')

	def create_time_str_func(fmt: str):
		def func(snapshot: SnapshotInfo) -> str:
			dt = datetime.datetime.fromtimestamp(snapshot.timestamp_ns / 1e9, tz=timezone)
			return dt.strftime(fmt)
		return func

	if settings.last != 0:
		mark_selections(settings.last, 'last', lambda s: str(s.snapshot_id))
	if settings.hour != 0:
		mark_selections(settings.hour, 'hour', create_time_str_func('%Y/%m/%d/%H'))
	if settings.day != 0:
		mark_selections(settings.day, 'day', create_time_str_func('%Y/%m/%d'))
	if settings.week != 0:
		mark_selections(settings.week, 'week', create_time_str_func('%G/%V'))
	if settings.month != 0:
		mark_selections(settings.month, 'month', create_time_str_func('%Y/%m'))
	if settings.year != 0:
		mark_selections(settings.year, 'year', create_time_str_func('%Y'))

	plan = PrunePlan()
	now = now_ns if now_ns is not None else time.time_ns()
	regular_keep_count = 0
	all_marks = collections.ChainMap(marks, fallback_marks)
	default_mark = PruneMark.create_remove('unmarked')
	for snapshot in snapshots:
		if snapshot.is_head:
			plan.append(PrunePlanItem(snapshot, PruneMark.create_head()))
			regular_keep_count += 1
			continue
		mark = all_marks.get(snapshot.snapshot_id, default_mark)
		if mark.keep:
			if 0 < settings.max_amount <= regular_keep_count:
				mark = PruneMark.create_remove('max_amount exceeded')
			elif 0 < settings.max_lifetime.value_nano < (now - snapshot.timestamp_ns):
				mark = PruneMark.create_remove('max_lifetime exceeded')

		plan.append(PrunePlanItem(snapshot, mark))
		if mark.keep:
			regular_keep_count += 1
	return plan


class PruneSnapshotAction(RepositoryAction[PruneResult]):
	"""
	Delete the manifests of snapshots not retained by the prune setting. Chunks are left to the garbage collector
	"""

	def __init__(self, *, settings: Optional[PruneConfig] = None, dry_run: bool = False, **kwargs):
		super().__init__(**kwargs)
		self.settings = settings if settings is not None else self.config.prune
		self.dry_run = dry_run

	def is_interruptable(self) -> bool:
		return True

	def __get_timezone(self) -> Optional[datetime.tzinfo]:
		if (timezone_override := self.settings.timezone_override) is not None:
			try:
				return pytz.timezone(timezone_override)
			except pytz.UnknownTimeZoneError as e:
				self.logger.error('Bad timezone override from config, using local timezone: {}'.format(e))
		return None

	def run(self) -> PruneResult:
		with self._open_repository() as repo:
			snapshots = ListSnapshotAction(repository=repo, config=self.config).run()
			plan = calc_prune_plan(snapshots, self.settings, timezone=self.__get_timezone())
			result = PruneResult(plan)
			removals = plan.get_removals()

			with log_utils.open_file_logger('prune', self.config.storage_path) as prune_logger:
				prune_logger.info('Prune started, dry_run={}'.format(self.dry_run))
				if len(removals) == 0:
					prune_logger.info('Nothing to prune')
					return result

				prune_logger.info('============== Prune calculate result start ==============')
				for pri in plan:
					prune_logger.info('Snapshot #{} at {}: keep={} reason={}'.format(pri.snapshot.snapshot_id, pri.snapshot.date_str, pri.mark.keep, pri.mark.reason))
				prune_logger.info('============== Prune calculate result end ==============')

				if self.dry_run:
					self.logger.info('Dry run, {} / {} snapshots would be deleted: {}'.format(len(removals), len(plan), [s.snapshot_id for s in removals]))
					return result

				for snapshot in removals:
					self._check_interrupted()
					repo.manifests.delete(snapshot.snapshot_id)
					prune_logger.info('Deleted snapshot #{}'.format(snapshot.snapshot_id))
					result.deleted_ids.append(snapshot.snapshot_id)
			self.logger.info('Pruned {} / {} snapshots: {}'.format(len(result.deleted_ids), len(plan), result.deleted_ids))
			return result
