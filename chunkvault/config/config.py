import functools
import json
import logging
from pathlib import Path
from typing import Optional, Union

from mcdreforged.api.utils import Serializable

from chunkvault import constants
from chunkvault.config.backend_config import BackendConfig
from chunkvault.config.backup_config import BackupConfig
from chunkvault.config.gc_config import GcConfig
from chunkvault.config.index_config import IndexConfig
from chunkvault.config.prune_config import PruneConfig
from chunkvault.config.retry_config import RetryConfig
from chunkvault.config.scheduled_backup_config import ScheduledBackupConfig


class Config(Serializable):
	debug: bool = False
	storage_root: str = './cv_files'  # local state: dedup index, run lock, logs
	concurrency: int = 0  # chunking workers. 0: half of the cpu count

	backup: BackupConfig = BackupConfig()
	backend: BackendConfig = BackendConfig()
	retry: RetryConfig = RetryConfig()
	index: IndexConfig = IndexConfig()
	prune: PruneConfig = PruneConfig()
	gc: GcConfig = GcConfig()
	scheduled_backup: ScheduledBackupConfig = ScheduledBackupConfig()

	# ==================== Instance getters ====================

	@classmethod
	@functools.lru_cache
	def __get_default(cls) -> 'Config':
		return Config.get_default()

	@classmethod
	def get(cls) -> 'Config':
		if _config is None:
			return cls.__get_default()
		return _config

	@classmethod
	def load(cls, file_path: Union[str, Path]) -> 'Config':
		with open(file_path, 'r', encoding='utf8') as f:
			data = json.load(f)
		if not isinstance(data, dict):
			raise ValueError('config file {} should contain a json object'.format(file_path))
		return cls.deserialize(data)

	def save(self, file_path: Union[str, Path]):
		with open(file_path, 'w', encoding='utf8') as f:
			json.dump(self.serialize(), f, indent=2, ensure_ascii=False)

	# ==================== Field getters ====================

	def get_effective_concurrency(self) -> int:
		if self.concurrency == 0:
			import multiprocessing
			return max(1, int(multiprocessing.cpu_count() * 0.5))
		else:
			return max(1, self.concurrency)

	@property
	def storage_path(self) -> Path:
		return Path(self.storage_root)

	@property
	def source_path(self) -> Path:
		return Path(self.backup.source_root)

	@property
	def index_db_path(self) -> Path:
		from chunkvault.db import db_constants
		return self.storage_path / db_constants.DB_FILE_NAME

	@property
	def run_lock_path(self) -> Path:
		return self.storage_path / constants.RUN_LOCK_FILE_NAME


_config: Optional[Config] = None


def set_config_instance(cfg: Config):
	global _config
	_config = cfg

	from chunkvault import logger
	logger.get().setLevel(logging.DEBUG if cfg.debug else logging.INFO)
	if cfg.debug:
		logger.get().debug('debug on')
