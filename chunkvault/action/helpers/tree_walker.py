import dataclasses
import enum
import os
import stat
from pathlib import Path
from typing import Iterator, List, Optional

import pathspec

from chunkvault import logger
from chunkvault.exceptions import SourceReadError, UnsupportedFileFormat
from chunkvault.types.backup_result import SkippedEntry


class EntryKind(enum.Enum):
	file = enum.auto()
	directory = enum.auto()
	symlink = enum.auto()


@dataclasses.dataclass(frozen=True)
class WalkEntry:
	path: str  # posix path, related to the walk root
	kind: EntryKind
	size: int
	mtime_ns: int
	mode: int
	link_target: Optional[str] = None

	@property
	def name(self) -> str:
		return self.path.rsplit('/', 1)[-1]

	@classmethod
	def of(cls, path: str, st: os.stat_result, kind: EntryKind, link_target: Optional[str] = None) -> 'WalkEntry':
		return cls(
			path=path,
			kind=kind,
			size=st.st_size if kind == EntryKind.file else 0,
			mtime_ns=st.st_mtime_ns,
			mode=stat.S_IMODE(st.st_mode),
			link_target=link_target,
		)


def _is_utf8_encodable(s: str) -> bool:
	try:
		s.encode('utf8')
	except UnicodeEncodeError:
		return False
	return True


class TreeWalker:
	"""
	Enumerates a directory tree depth first, children in name order, so two walks over
	an unchanged tree always produce the same sequence. Symlinks are reported, never followed.

	Entries that vanish or cannot be read during the walk do not stop it. They are
	collected in :attr:`skipped` and left out of the result
	"""

	def __init__(self, root: Path, ignore_patterns: List[str]):
		self.root = root
		self.logger = logger.get()
		self.ignore_spec = pathspec.GitIgnoreSpec.from_lines(ignore_patterns)
		self.skipped: List[SkippedEntry] = []
		self.ignored_count = 0
		self.root_entry: Optional[WalkEntry] = None  # available once the walk started

	def __skip(self, path: str, reason: str):
		self.logger.warning('Skipping {!r}: {}'.format(path, reason))
		self.skipped.append(SkippedEntry(path, reason))

	def __is_ignored(self, rel_path: str, is_dir: bool) -> bool:
		if self.ignore_spec.match_file(rel_path):
			return True
		return is_dir and self.ignore_spec.match_file(rel_path + '/')

	def walk(self) -> Iterator[WalkEntry]:
		try:
			st = self.root.stat()
		except OSError as e:
			raise SourceReadError(str(self.root), 'cannot access the source root: {}'.format(e)) from e
		if not stat.S_ISDIR(st.st_mode):
			raise SourceReadError(str(self.root), 'the source root is not a directory')
		self.root_entry = WalkEntry.of('', st, EntryKind.directory)

		try:
			names = sorted(os.listdir(self.root))
		except OSError as e:
			raise SourceReadError(str(self.root), 'cannot list the source root: {}'.format(e)) from e
		yield from self.__walk_children(self.root, '', names)

	def __walk_children(self, dir_path: Path, rel_dir: str, names: List[str]) -> Iterator[WalkEntry]:
		for name in names:
			rel_path = name if rel_dir == '' else rel_dir + '/' + name
			full_path = dir_path / name
			if not _is_utf8_encodable(name):
				# undecodable bytes come back as surrogate escapes, a manifest cannot store them
				self.__skip(rel_path.encode('utf8', 'backslashreplace').decode('utf8'), 'name is not valid utf-8')
				continue
			try:
				st = full_path.lstat()
			except FileNotFoundError:
				self.__skip(rel_path, 'vanished before it could be read')
				continue
			except OSError as e:
				self.__skip(rel_path, 'cannot stat: {}'.format(e))
				continue

			is_dir = stat.S_ISDIR(st.st_mode)
			if self.__is_ignored(rel_path, is_dir):
				self.ignored_count += 1
				continue

			if stat.S_ISREG(st.st_mode):
				yield WalkEntry.of(rel_path, st, EntryKind.file)
			elif stat.S_ISLNK(st.st_mode):
				try:
					target = os.readlink(full_path)
				except OSError as e:
					self.__skip(rel_path, 'cannot read symlink: {}'.format(e))
					continue
				if not _is_utf8_encodable(target):
					self.__skip(rel_path, 'symlink target is not valid utf-8')
					continue
				yield WalkEntry.of(rel_path, st, EntryKind.symlink, link_target=target)
			elif is_dir:
				try:
					child_names = sorted(os.listdir(full_path))
				except FileNotFoundError:
					self.__skip(rel_path, 'vanished before it could be listed')
					continue
				except OSError as e:
					self.__skip(rel_path, 'cannot list directory: {}'.format(e))
					continue
				yield WalkEntry.of(rel_path, st, EntryKind.directory)
				yield from self.__walk_children(full_path, rel_path, child_names)
			else:
				self.__skip(rel_path, UnsupportedFileFormat(rel_path, st.st_mode).reason)
