from content_relay.storage.sql.connection import Database, create_engine
from content_relay.storage.sql.repos import SqlContentStore, SqlOutboxStore, SqlViewStore, SqlWatchRecordStore

__all__ = [
    "Database",
    "create_engine",
    "SqlContentStore",
    "SqlOutboxStore",
    "SqlViewStore",
    "SqlWatchRecordStore",
]
