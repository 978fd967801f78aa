from typing import Optional

from sqlalchemy import Engine, Inspector
from sqlalchemy.orm import Session

from chunkvault import logger
from chunkvault.db import schema, db_constants
from chunkvault.exceptions import ChunkVaultError
from chunkvault.types.hash_method import HashMethod


class BadDbVersion(ChunkVaultError):
	pass


class DbMigration:
	DB_MAGIC_INDEX = db_constants.DB_MAGIC_INDEX
	DB_VERSION = db_constants.DB_VERSION

	def __init__(self, engine: Engine):
		self.logger = logger.get()
		self.engine = engine

	def check_and_create(self, *, hash_method: HashMethod, namespace: str):
		inspector = Inspector.from_engine(self.engine)
		if inspector.has_table(schema.DbMeta.__tablename__):
			with Session(self.engine) as session, session.begin():
				dbm: Optional[schema.DbMeta] = session.get(schema.DbMeta, self.DB_MAGIC_INDEX)
				if dbm is None:
					raise ValueError('table DbMeta is empty')
				current_version = dbm.version

			# there's only one version for now. A real migration goes here once the schema changes
			if current_version != self.DB_VERSION:
				raise BadDbVersion('DB version mismatch (expect {}, found {})'.format(self.DB_VERSION, current_version))
		else:
			self.logger.info('Table {} does not exist, assuming newly created db, create everything'.format(schema.DbMeta.__tablename__))
			self.__create_the_world(hash_method, namespace)

	def __create_the_world(self, hash_method: HashMethod, namespace: str):
		schema.Base.metadata.create_all(self.engine)
		with Session(self.engine) as session, session.begin():
			session.add(schema.DbMeta(
				magic=self.DB_MAGIC_INDEX,
				version=self.DB_VERSION,
				hash_method=hash_method.name,
				namespace=namespace,
			))
