import dataclasses
import json
from typing import Optional, Tuple, Union, Iterator, Set, Dict, Any

from typing_extensions import Self

from chunkvault import constants
from chunkvault.exceptions import BadManifest
from chunkvault.types.chunk import ChunkId
from chunkvault.types.hash_method import HashMethod


@dataclasses.dataclass(frozen=True)
class FileEntry:
	name: str
	size: int
	mtime_ns: int
	mode: int
	chunk_ids: Tuple[ChunkId, ...]  # in file order, their concatenation is the whole file


@dataclasses.dataclass(frozen=True)
class SymlinkEntry:
	name: str
	target: str
	mtime_ns: int
	mode: int


@dataclasses.dataclass(frozen=True)
class DirEntry:
	name: str
	mode: int
	mtime_ns: int
	children: Tuple['Entry', ...] = ()  # sorted by name

	def get_child(self, name: str) -> Optional['Entry']:
		for child in self.children:
			if child.name == name:
				return child
		return None


Entry = Union[FileEntry, DirEntry, SymlinkEntry]


def join_path(parent: str, name: str) -> str:
	return name if parent == '' else parent + '/' + name


def iter_entries(directory: DirEntry, prefix: str = '') -> Iterator[Tuple[str, Entry]]:
	"""
	Depth first, in name order. Paths are relative posix paths, the root directory itself is not yielded
	"""
	for child in directory.children:
		path = join_path(prefix, child.name)
		yield path, child
		if isinstance(child, DirEntry):
			yield from iter_entries(child, path)


def entry_to_dict(entry: Entry) -> Dict[str, Any]:
	if isinstance(entry, FileEntry):
		return {
			'type': 'file', 'name': entry.name, 'size': entry.size, 'mtime_ns': entry.mtime_ns, 'mode': entry.mode,
			'chunks': list(entry.chunk_ids),
		}
	elif isinstance(entry, DirEntry):
		return {
			'type': 'dir', 'name': entry.name, 'mtime_ns': entry.mtime_ns, 'mode': entry.mode,
			'children': [entry_to_dict(child) for child in entry.children],
		}
	elif isinstance(entry, SymlinkEntry):
		return {
			'type': 'symlink', 'name': entry.name, 'mtime_ns': entry.mtime_ns, 'mode': entry.mode,
			'target': entry.target,
		}
	else:
		raise TypeError('unknown entry type {}'.format(type(entry)))


def entry_from_dict(data: Dict[str, Any]) -> Entry:
	try:
		entry_type = data['type']
		if entry_type == 'file':
			return FileEntry(
				name=data['name'], size=int(data['size']), mtime_ns=int(data['mtime_ns']), mode=int(data['mode']),
				chunk_ids=tuple(ChunkId(c) for c in data['chunks']),
			)
		elif entry_type == 'dir':
			return DirEntry(
				name=data['name'], mtime_ns=int(data['mtime_ns']), mode=int(data['mode']),
				children=tuple(entry_from_dict(c) for c in data['children']),
			)
		elif entry_type == 'symlink':
			return SymlinkEntry(
				name=data['name'], mtime_ns=int(data['mtime_ns']), mode=int(data['mode']),
				target=data['target'],
			)
		else:
			raise BadManifest('unknown entry type {!r}'.format(entry_type))
	except (KeyError, TypeError, ValueError) as e:
		raise BadManifest('malformed entry {!r}: {}'.format(data, e)) from e


@dataclasses.dataclass(frozen=True)
class ManifestStats:
	file_count: int = 0
	dir_count: int = 0
	symlink_count: int = 0
	total_size: int = 0
	chunk_ref_count: int = 0

	@classmethod
	def of(cls, root: DirEntry) -> 'ManifestStats':
		counts = {FileEntry: 0, DirEntry: 0, SymlinkEntry: 0}
		total_size = 0
		chunk_ref_count = 0
		for _, entry in iter_entries(root):
			counts[type(entry)] += 1
			if isinstance(entry, FileEntry):
				total_size += entry.size
				chunk_ref_count += len(entry.chunk_ids)
		return ManifestStats(counts[FileEntry], counts[DirEntry], counts[SymlinkEntry], total_size, chunk_ref_count)


@dataclasses.dataclass(frozen=True)
class Manifest:
	"""
	A committed snapshot: the full tree of the source root at one point in time, with file contents
	referenced through chunk ids only. Self-describing, so restore needs nothing but this and the chunk blobs
	"""
	snapshot_id: int
	timestamp_ns: int
	previous_id: Optional[int]
	hash_method: HashMethod
	root: DirEntry
	comment: str = ''

	@property
	def stats(self) -> ManifestStats:
		return ManifestStats.of(self.root)

	def iter_entries(self) -> Iterator[Tuple[str, Entry]]:
		return iter_entries(self.root)

	def iter_files(self) -> Iterator[Tuple[str, FileEntry]]:
		for path, entry in self.iter_entries():
			if isinstance(entry, FileEntry):
				yield path, entry

	def all_chunk_ids(self) -> Set[ChunkId]:
		ids: Set[ChunkId] = set()
		for _, file in self.iter_files():
			ids.update(file.chunk_ids)
		return ids

	def find_entry(self, path: str) -> Optional[Entry]:
		node: Entry = self.root
		for part in [p for p in path.strip('/').split('/') if p]:
			if not isinstance(node, DirEntry):
				return None
			node = node.get_child(part)
			if node is None:
				return None
		return node

	def content_equals(self, other: 'Manifest') -> bool:
		"""
		Same tree, ignoring the snapshot identity (id, timestamp, previous, comment)
		"""
		return self.hash_method == other.hash_method and self.root == other.root

	# ============================== Serialization ==============================

	def to_dict(self) -> Dict[str, Any]:
		stats = self.stats
		return {
			'format_version': constants.MANIFEST_FORMAT_VERSION,
			'snapshot_id': self.snapshot_id,
			'timestamp_ns': self.timestamp_ns,
			'previous_id': self.previous_id,
			'hash_method': self.hash_method.name,
			'comment': self.comment,
			'stats': dataclasses.asdict(stats),
			'root': entry_to_dict(self.root),
		}

	def to_bytes(self) -> bytes:
		return json.dumps(self.to_dict(), ensure_ascii=False, separators=(',', ':')).encode('utf8')

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> Self:
		try:
			version = data['format_version']
			if version != constants.MANIFEST_FORMAT_VERSION:
				raise BadManifest('unsupported manifest format version {!r}'.format(version))
			root = entry_from_dict(data['root'])
			if not isinstance(root, DirEntry):
				raise BadManifest('manifest root is not a directory')
			previous_id = data['previous_id']
			return cls(
				snapshot_id=int(data['snapshot_id']),
				timestamp_ns=int(data['timestamp_ns']),
				previous_id=int(previous_id) if previous_id is not None else None,
				hash_method=HashMethod[data['hash_method']],
				root=root,
				comment=str(data.get('comment', '')),
			)
		except (KeyError, TypeError, ValueError) as e:
			raise BadManifest('malformed manifest: {}'.format(e)) from e

	@classmethod
	def from_bytes(cls, buf: bytes) -> Self:
		try:
			data = json.loads(buf.decode('utf8'))
		except (UnicodeDecodeError, ValueError) as e:
			raise BadManifest('manifest is not valid json: {}'.format(e)) from e
		if not isinstance(data, dict):
			raise BadManifest('manifest is not a json object')
		return cls.from_dict(data)
