import os
import shutil
import stat
import threading
from pathlib import Path


def rm_rf(path: Path, *, missing_ok: bool = False):
	"""
	Does not follow symlink
	"""
	try:
		is_dir = stat.S_ISDIR(path.lstat().st_mode)
	except FileNotFoundError:
		if not missing_ok:
			raise
	else:
		if is_dir:
			shutil.rmtree(path)
		else:
			path.unlink(missing_ok=missing_ok)


def write_file_atomic(path: Path, data: bytes):
	"""
	Readers either see the old content or the new content, never a partial one
	"""
	temp_path = path.parent / f'.{path.name}.{os.getpid()}_{threading.get_ident()}.tmp'
	try:
		with open(temp_path, 'wb') as f:
			f.write(data)
			f.flush()
			os.fsync(f.fileno())
		os.replace(temp_path, path)
	except BaseException:
		temp_path.unlink(missing_ok=True)
		raise
