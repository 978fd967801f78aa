from typing import Optional, Dict, List, Iterable, Collection, Iterator

from sqlalchemy import select, delete, func
from sqlalchemy.orm import Session

from chunkvault.db import schema, db_constants
from chunkvault.utils import collection_utils


class DbSession:
	def __init__(self, session: Session):
		self.session = session

		# the limit in old sqlite (https://www.sqlite.org/limits.html#max_variable_number)
		self.__safe_var_limit = 999 - 20

	# ==================================== DbMeta ====================================

	def get_db_meta(self) -> schema.DbMeta:
		meta: Optional[schema.DbMeta] = self.session.get(schema.DbMeta, db_constants.DB_MAGIC_INDEX)
		if meta is None:
			raise ValueError('None db meta')
		return meta

	# ================================== KnownChunk ==================================

	def get_known_chunk(self, chunk_id: str) -> Optional[schema.KnownChunk]:
		return self.session.get(schema.KnownChunk, chunk_id)

	def get_known_chunks(self, chunk_ids: Collection[str]) -> Dict[str, schema.KnownChunk]:
		result: Dict[str, schema.KnownChunk] = {}
		for view in collection_utils.slicing_iterate(list(chunk_ids), self.__safe_var_limit):
			for kc in self.session.execute(select(schema.KnownChunk).where(schema.KnownChunk.chunk_id.in_(view))).scalars().all():
				result[kc.chunk_id] = kc
		return result

	def upsert_known_chunk(self, chunk_id: str, size: Optional[int], confirmed_at_ns: int) -> schema.KnownChunk:
		kc = self.get_known_chunk(chunk_id)
		if kc is None:
			kc = schema.KnownChunk(chunk_id=chunk_id, size=size, confirmed_at_ns=confirmed_at_ns)
			self.session.add(kc)
		else:
			if size is not None:
				kc.size = size
			kc.confirmed_at_ns = confirmed_at_ns
		return kc

	def delete_known_chunks(self, chunk_ids: Iterable[str]) -> int:
		deleted = 0
		for view in collection_utils.slicing_iterate(list(chunk_ids), self.__safe_var_limit):
			deleted += self.session.execute(delete(schema.KnownChunk).where(schema.KnownChunk.chunk_id.in_(view))).rowcount
		return deleted

	def delete_all_known_chunks(self) -> int:
		return self.session.execute(delete(schema.KnownChunk)).rowcount

	def get_known_chunk_count(self) -> int:
		return int(self.session.execute(select(func.count()).select_from(schema.KnownChunk)).scalar_one())

	def iterate_known_chunk_ids(self, *, batch_size: int = 5000) -> Iterator[List[str]]:
		last: Optional[str] = None
		while True:
			s = select(schema.KnownChunk.chunk_id).order_by(schema.KnownChunk.chunk_id).limit(batch_size)
			if last is not None:
				s = s.where(schema.KnownChunk.chunk_id > last)
			ids = list(self.session.execute(s).scalars().all())
			if len(ids) == 0:
				break
			yield ids
			last = ids[-1]
