DB_FILE_NAME = 'dedup_index.db'
DB_MAGIC_INDEX: int = 0
DB_VERSION: int = 1
