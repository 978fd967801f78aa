import time
from typing import Dict, Optional, Tuple

from chunkvault.types.chunk import ChunkId
from chunkvault.types.hash_method import HashMethod
from chunkvault.types.manifest import FileEntry, DirEntry, SymlinkEntry, Entry, Manifest


class _DirNode:
	def __init__(self, name: str, mode: int = 0o755, mtime_ns: int = 0):
		self.name = name
		self.mode = mode
		self.mtime_ns = mtime_ns
		self.children: Dict[str, '_DirNode'] = {}
		self.leaves: Dict[str, Entry] = {}

	def to_entry(self) -> DirEntry:
		children = [d.to_entry() for d in self.children.values()]
		children.extend(self.leaves.values())
		children.sort(key=lambda e: e.name)
		return DirEntry(name=self.name, mode=self.mode, mtime_ns=self.mtime_ns, children=tuple(children))


class ManifestBuilder:
	"""
	Collects entries keyed by their relative posix path, in any order, and builds the sorted tree.
	Intermediate directories that were never added explicitly are created with default metadata
	"""

	def __init__(self, hash_method: HashMethod):
		self.hash_method = hash_method
		self.__root = _DirNode('')

	@classmethod
	def __split(cls, path: str) -> Tuple[str, ...]:
		parts = tuple(p for p in path.split('/') if p)
		if len(parts) == 0 or any(p in ('.', '..') for p in parts):
			raise ValueError('bad entry path {!r}'.format(path))
		return parts

	def __get_dir(self, parts: Tuple[str, ...]) -> _DirNode:
		node = self.__root
		for part in parts:
			if part in node.leaves:
				raise ValueError('{!r} is both a directory and a non-directory'.format('/'.join(parts)))
			child = node.children.get(part)
			if child is None:
				child = node.children[part] = _DirNode(part)
			node = child
		return node

	def __add_leaf(self, path: str, entry: Entry):
		parts = self.__split(path)
		parent = self.__get_dir(parts[:-1])
		if parts[-1] in parent.children:
			raise ValueError('{!r} is both a directory and a non-directory'.format(path))
		parent.leaves[parts[-1]] = entry

	def set_root(self, mode: int, mtime_ns: int):
		self.__root.mode = mode
		self.__root.mtime_ns = mtime_ns

	def add_dir(self, path: str, mode: int, mtime_ns: int):
		node = self.__get_dir(self.__split(path))
		node.mode = mode
		node.mtime_ns = mtime_ns

	def add_file(self, path: str, size: int, mtime_ns: int, mode: int, chunk_ids: Tuple[ChunkId, ...]):
		name = self.__split(path)[-1]
		self.__add_leaf(path, FileEntry(name=name, size=size, mtime_ns=mtime_ns, mode=mode, chunk_ids=tuple(chunk_ids)))

	def add_symlink(self, path: str, target: str, mtime_ns: int, mode: int):
		name = self.__split(path)[-1]
		self.__add_leaf(path, SymlinkEntry(name=name, target=target, mtime_ns=mtime_ns, mode=mode))

	def build_tree(self) -> DirEntry:
		return self.__root.to_entry()

	def build(self, snapshot_id: int, previous_id: Optional[int], *, timestamp_ns: Optional[int] = None, comment: str = '') -> Manifest:
		return Manifest(
			snapshot_id=snapshot_id,
			timestamp_ns=timestamp_ns if timestamp_ns is not None else time.time_ns(),
			previous_id=previous_id,
			hash_method=self.hash_method,
			root=self.build_tree(),
			comment=comment,
		)
