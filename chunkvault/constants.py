import uuid

APP_ID = 'chunkvault'
INSTANCE_ID = uuid.uuid4().hex[:4]

# storage root layout
DEFAULT_CONFIG_FILE_NAME = 'config.json'
RUN_LOCK_FILE_NAME = 'run.lock'

# backend key layout
CHUNK_KEY_PREFIX = 'chunks/'
SNAPSHOT_KEY_PREFIX = 'snapshots/'
HEAD_KEY = 'HEAD'

MANIFEST_FORMAT_VERSION = 1
