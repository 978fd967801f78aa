import functools
import importlib.metadata

from chunkvault import constants


@functools.lru_cache(None)
def get_version() -> str:
	try:
		return importlib.metadata.version(constants.APP_ID)
	except importlib.metadata.PackageNotFoundError:
		return '?'
