import contextlib
import threading
import time
from pathlib import Path
from typing import Optional, ContextManager, Iterable, Set, Iterator

from sqlalchemy import create_engine, Engine, event
from sqlalchemy.orm import Session

from chunkvault import logger
from chunkvault.db.migration import DbMigration
from chunkvault.db.session import DbSession
from chunkvault.types.chunk import ChunkId
from chunkvault.types.hash_method import HashMethod


class DedupIndex:
	"""
	Local persistent record of which chunk ids are known to exist in the backend.

	It's a cache over remote existence, not the source of truth: an entry is only ever written
	after the backend confirmed the chunk (successful put or exists). Losing the index only costs
	extra backend round-trips. The index is bound to one backend namespace and one hash method,
	opening it for anything else starts over with an empty index.

	All accesses are serialized by one lock, so it's safe to share between worker threads
	"""

	def __init__(self, db_path: Path, *, hash_method: HashMethod, namespace: str, reconfirm_after_sec: Optional[float] = None):
		self.logger = logger.get()
		self.db_path = db_path
		self.hash_method = hash_method
		self.namespace = namespace
		self.reconfirm_after_sec = reconfirm_after_sec
		self.__lock = threading.RLock()
		self.__engine: Optional[Engine] = None

	# ============================== Lifecycle ==============================

	def open(self) -> 'DedupIndex':
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		engine = create_engine('sqlite:///' + str(self.db_path))

		@event.listens_for(engine, 'connect')
		def on_connect(dbapi_connection, connection_record):
			cursor = dbapi_connection.cursor()
			cursor.execute('PRAGMA journal_mode=WAL')
			cursor.execute('PRAGMA synchronous=NORMAL')
			cursor.close()

		DbMigration(engine).check_and_create(hash_method=self.hash_method, namespace=self.namespace)
		self.__engine = engine
		self.__check_binding()
		return self

	def close(self):
		with self.__lock:
			if (engine := self.__engine) is not None:
				engine.dispose()
				self.__engine = None

	def __enter__(self) -> 'DedupIndex':
		return self.open()

	def __exit__(self, exc_type, exc_val, exc_tb):
		self.close()

	def __check_binding(self):
		with self.__open_session() as session:
			meta = session.get_db_meta()
			if meta.namespace == self.namespace and meta.hash_method == self.hash_method.name:
				return
			self.logger.warning('Dedup index was built for namespace {!r} hash {}, but now it is {!r} hash {}, dropping all {} entries'.format(
				meta.namespace, meta.hash_method, self.namespace, self.hash_method.name, session.get_known_chunk_count(),
			))
			session.delete_all_known_chunks()
			meta.namespace = self.namespace
			meta.hash_method = self.hash_method.name

	@contextlib.contextmanager
	def __open_session(self) -> ContextManager[DbSession]:
		with self.__lock:
			if self.__engine is None:
				raise RuntimeError('dedup index is not opened')
			with Session(self.__engine) as session, session.begin():
				yield DbSession(session)

	def __is_fresh(self, confirmed_at_ns: int, now_ns: int) -> bool:
		if self.reconfirm_after_sec is None:
			return True
		return now_ns - confirmed_at_ns <= self.reconfirm_after_sec * 1e9

	# ============================== Operations ==============================

	def lookup(self, chunk_id: ChunkId) -> bool:
		"""
		:return: True if the chunk is known to exist in the backend
		"""
		with self.__open_session() as session:
			kc = session.get_known_chunk(chunk_id)
			return kc is not None and self.__is_fresh(kc.confirmed_at_ns, time.time_ns())

	def lookup_many(self, chunk_ids: Iterable[ChunkId]) -> Set[ChunkId]:
		"""
		:return: the subset of the given chunk ids that are known to exist in the backend
		"""
		now = time.time_ns()
		with self.__open_session() as session:
			known = session.get_known_chunks(set(chunk_ids))
			return {ChunkId(cid) for cid, kc in known.items() if self.__is_fresh(kc.confirmed_at_ns, now)}

	def mark_present(self, chunk_id: ChunkId, size: Optional[int] = None):
		"""
		Idempotent. Only call this after the backend confirmed the chunk
		"""
		with self.__open_session() as session:
			session.upsert_known_chunk(chunk_id, size, time.time_ns())

	def forget(self, chunk_ids: Iterable[ChunkId]) -> int:
		with self.__open_session() as session:
			return session.delete_known_chunks(chunk_ids)

	def clear(self) -> int:
		with self.__open_session() as session:
			return session.delete_all_known_chunks()

	def count(self) -> int:
		with self.__open_session() as session:
			return session.get_known_chunk_count()

	def iter_ids(self) -> Iterator[ChunkId]:
		with self.__open_session() as session:
			batches = list(session.iterate_known_chunk_ids())
		for batch in batches:
			for cid in batch:
				yield ChunkId(cid)
