from pathlib import Path

from chunkvault.backend.base import BlobBackend
from chunkvault.config.backend_config import BackendConfig, BackendType


def create_backend(config: BackendConfig) -> BlobBackend:
	if config.type == BackendType.local:
		from chunkvault.backend.local_backend import LocalDirectoryBackend
		return LocalDirectoryBackend(Path(config.local_root))
	elif config.type == BackendType.azure:
		from chunkvault.backend.azure_backend import AzureBlobBackend
		return AzureBlobBackend(config.sas_url, timeout=config.timeout.value, max_connections=config.max_concurrency * 2)
	else:
		raise ValueError('unknown backend type {!r}'.format(config.type))
