from typing import get_type_hints, Optional

from sqlalchemy import String, Integer, BigInteger
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
	def __repr__(self) -> str:
		return '{}({})'.format(
			self.__class__.__name__,
			', '.join(f'{k}={v!r}' for k, v in self.to_dict().items()),
		)

	def to_dict(self) -> dict:
		values = {}
		for name, type_ in get_type_hints(self.__class__).items():
			if name == '__fields_end__':
				break
			if not name.startswith('_') and getattr(type_, '__origin__', None) == Mapped:
				values[name] = getattr(self, name)
		return values


class DbMeta(Base):
	__tablename__ = 'db_meta'

	magic: Mapped[int] = mapped_column(Integer, primary_key=True)
	version: Mapped[int] = mapped_column(Integer)
	hash_method: Mapped[str] = mapped_column(String)
	namespace: Mapped[str] = mapped_column(String)  # the backend the confirmations were made against


class KnownChunk(Base):
	"""
	A chunk that was confirmed to exist in the backend, by a successful put or exists call
	"""
	__tablename__ = 'known_chunk'

	chunk_id: Mapped[str] = mapped_column(String, primary_key=True)
	size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # raw size, None if it was confirmed without being read
	confirmed_at_ns: Mapped[int] = mapped_column(BigInteger)

	__fields_end__: bool
